"""HTTP layer: response envelope, request middleware, error handlers and app wiring.

Import create_app from api.app; the envelope helpers are re-exported here.
"""

from api.base import APIResponse, ErrorCodes, error_response, success_response
