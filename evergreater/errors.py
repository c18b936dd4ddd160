"""Error taxonomy shared by the ledger, HTTP routes and socket handlers.

Domain errors (authentication, insufficient resources, bad input) are
expected and returned to the caller as-is. Infrastructure errors are logged
where they happen and surfaced with an opaque message.
"""

from flask import jsonify


class EconomyError(Exception):
    status_code = 500
    message = 'Internal server error'

    def __init__(self, message=None):
        if message is not None:
            self.message = message
        super().__init__(self.message)

    def to_dict(self):
        return {'error': self.message}


class AuthenticationError(EconomyError):
    status_code = 401
    message = 'Not authenticated'


class InsufficientResource(EconomyError):
    status_code = 403
    message = 'Insufficient resources'

    def __init__(self, resource, message=None):
        self.resource = resource
        super().__init__(message)


class ValidationError(EconomyError):
    status_code = 400
    message = 'Invalid request'


class TransientInfraError(EconomyError):
    status_code = 500
    message = 'Internal server error'

    def __init__(self, operation, message=None):
        self.operation = operation
        super().__init__(message)


def register_error_handlers(app):
    @app.errorhandler(EconomyError)
    def handle_economy_error(exc):
        return jsonify(exc.to_dict()), exc.status_code

    from evergreater import login_manager

    @login_manager.unauthorized_handler
    def handle_unauthorized():
        return jsonify(AuthenticationError().to_dict()), AuthenticationError.status_code
