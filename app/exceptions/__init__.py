"""Custom exceptions for the Presu quoting application."""


class PresuError(Exception):
    """Base exception for all application errors."""
    def __init__(self, message="An internal error occurred", status_code=500, payload=None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.payload = payload

    def to_dict(self):
        rv = dict(self.payload or ())
        rv['message'] = self.message
        rv['status'] = 'error'
        return rv


class BusinessLogicError(PresuError):
    """Exception raised for business logic violations."""
    def __init__(self, message, status_code=400, payload=None):
        super().__init__(message, status_code, payload)


class ValidationError(BusinessLogicError):
    """Raised when input data is malformed (margins, overrides, states)."""
    def __init__(self, message, payload=None):
        super().__init__(message, 400, payload)


class NotFoundError(PresuError):
    """Exception raised when a resource is not found."""
    def __init__(self, message="Resource not found", payload=None):
        super().__init__(message, 404, payload)


class StateConflictError(BusinessLogicError):
    """Raised when a quote's lifecycle state forbids the requested operation."""
    def __init__(self, current_state, message=None, target_state=None):
        estado = getattr(current_state, 'value', current_state)
        destino = getattr(target_state, 'value', target_state)
        if message is None:
            if destino:
                message = f"Transición no permitida: {estado} → {destino}"
            else:
                message = f"El presupuesto en estado {estado} no admite cambios"
        payload = {'estado_actual': estado}
        if destino:
            payload['estado_destino'] = destino
        super().__init__(message, status_code=409, payload=payload)


class ComputationError(PresuError):
    """Raised when an aggregation fails unexpectedly (treated as a bug)."""
    def __init__(self, message="Error interno al calcular el resumen económico"):
        super().__init__(message, 500)


class PdfRendererError(PresuError):
    """Raised when the external PDF renderer is missing or fails."""
    def __init__(self, message, status_code=502):
        super().__init__(message, status_code)
