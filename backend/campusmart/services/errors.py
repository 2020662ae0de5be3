from __future__ import annotations


class OrderFlowError(Exception):
    code = "ORDER_FLOW_ERROR"
    http_status = 400

    def __init__(self, message: str = "", **context):
        super().__init__(message or self.code)
        self.message = message or self.code
        self.context = context


# Validation: caller supplied something unusable; nothing was applied.

class ValidationFailed(OrderFlowError):
    code = "VALIDATION_FAILED"
    http_status = 400


class OutOfRange(ValidationFailed):
    code = "OUT_OF_RANGE"


class MissingDetails(ValidationFailed):
    code = "MISSING_DETAILS"


class StepSkipped(ValidationFailed):
    code = "STEP_SKIPPED"


class PriorStepIncomplete(ValidationFailed):
    code = "PRIOR_STEP_INCOMPLETE"


class NotCurrentStep(ValidationFailed):
    code = "NOT_CURRENT_STEP"


class MissingReason(ValidationFailed):
    code = "MISSING_REASON"


class InvalidDecision(ValidationFailed):
    code = "INVALID_DECISION"


class InvalidIdentifier(ValidationFailed):
    code = "INVALID_IDENTIFIER"


# Not found.

class RecordNotFound(OrderFlowError):
    code = "RECORD_NOT_FOUND"
    http_status = 404


class ProofNotFound(RecordNotFound):
    code = "PROOF_NOT_FOUND"


# State conflicts: refetch before retrying.

class StateConflict(OrderFlowError):
    code = "STATE_CONFLICT"
    http_status = 409


class AlreadyTerminal(StateConflict):
    code = "ALREADY_TERMINAL"


class AlreadyProcessed(StateConflict):
    code = "ALREADY_PROCESSED"


class DuplicateRecord(StateConflict):
    code = "DUPLICATE_RECORD"


class StepAlreadyCompleted(StateConflict):
    code = "STEP_ALREADY_COMPLETED"


class ConcurrentUpdate(StateConflict):
    code = "CONCURRENT_UPDATE"


# Critical dependency failure: the whole operation was rolled back.

class PayoutLedgerError(OrderFlowError):
    code = "PAYOUT_LEDGER_FAILED"
    http_status = 500
