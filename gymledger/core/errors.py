"""Typed failures returned by the lifecycle, ingress and settlement services."""

from __future__ import annotations


class LedgerError(Exception):
    code = "LEDGER_ERROR"
    status_code = 400
    default_message = "Request could not be completed"

    def __init__(self, message: str | None = None):
        super().__init__(message or self.default_message)
        self.message = message or self.default_message


class PlanNotFound(LedgerError):
    code = "PLAN_NOT_FOUND"
    status_code = 404
    default_message = "Subscription plan not found"


class GymNotFound(LedgerError):
    code = "GYM_NOT_FOUND"
    status_code = 404
    default_message = "Gym not found"


class SubscriptionNotFound(LedgerError):
    code = "SUBSCRIPTION_NOT_FOUND"
    status_code = 404
    default_message = "Subscription not found"


class AlreadyActive(LedgerError):
    code = "ALREADY_ACTIVE"
    status_code = 409
    default_message = "User already has an active subscription"


class PaymentServiceError(LedgerError):
    code = "PAYMENT_SERVICE_ERROR"
    status_code = 502
    default_message = "Payment service unavailable"


class PaymentNotFound(LedgerError):
    code = "PAYMENT_NOT_FOUND"
    status_code = 404
    default_message = "Payment record not found"


class InvalidWebhookPayload(LedgerError):
    code = "INVALID_PAYLOAD"
    status_code = 400
    default_message = "Webhook payload could not be parsed"


class InvalidSignature(LedgerError):
    code = "INVALID_SIGNATURE"
    status_code = 400
    default_message = "Payment verification failed"


class NoUnsettledPayments(LedgerError):
    code = "NO_UNSETTLED_PAYMENTS"
    status_code = 409
    default_message = "No unsettled payments for this gym"


class SettlementNotFound(LedgerError):
    code = "SETTLEMENT_NOT_FOUND"
    status_code = 404
    default_message = "Settlement not found"


class SettlementAlreadyProcessed(LedgerError):
    code = "SETTLEMENT_ALREADY_PROCESSED"
    status_code = 409
    default_message = "Settlement is already processed"


class AccessCodeUnavailable(LedgerError):
    code = "ACCESS_CODE_UNAVAILABLE"
    status_code = 503
    default_message = "Could not allocate a unique access code"


class NotificationNotFound(LedgerError):
    code = "NOTIFICATION_NOT_FOUND"
    status_code = 404
    default_message = "Notification not found"
