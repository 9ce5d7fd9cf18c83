# SPDX-License-Identifier: Apache-2.0

"""
Status workflow engine for permit applications.

Every status write goes through this module: citizen submissions, staff
transitions and the payment cascade. Writes are last-write-wins with no
concurrency token. Ordering along the nominal flow is not enforced; only
the value itself is validated. Notifications are best-effort side effects
reported next to the primary result.
"""

import logging
from typing import List, Dict, Any, Optional
from opentelemetry import trace
from opentelemetry.trace import Status, StatusCode

from models.entities import Application
from models.enums import ApplicationStatus
from models.requests import SubmitApplicationRequest
from domain.applications import (
    ApplicationNotFoundError,
    SideEffectAttempt,
    TransitionOutcome,
    application_reference,
    build_status_message,
    generate_reference_no,
    is_nominal_transition,
    parse_status,
)

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

REFERENCE_ATTEMPTS = 3


class StatusWorkflowEngine:
    """
    Orchestrates status changes over the application record store.

    Args:
        store: ApplicationRecordStore (or anything with the same methods)
        sms_client: Client with ``send(phone, message)``, optional
        audit_service: AuditService for best-effort audit entries, optional
        sms_sender: Name prefixed to citizen messages
    """

    def __init__(self, store, sms_client=None, audit_service=None,
                 sms_sender: str = "Dipolog Permits"):
        self.store = store
        self.sms_client = sms_client
        self.audit_service = audit_service
        self.sms_sender = sms_sender

    def submit(self, request: SubmitApplicationRequest) -> Dict[str, Any]:
        """
        Store a new application in ``submitted`` state.

        The applicant is upserted by email, so resubmitting with the same
        email updates the name and phone and attaches the new application
        to the same applicant.

        Args:
            request: Validated submission

        Returns:
            Dictionary with id, reference_no and status
        """
        with tracer.start_as_current_span("workflow.submit") as span:
            span.set_attribute("application.type", request.type)

            applicant = self.store.upsert_applicant(request.full_name, request.phone, request.email)

            last_error: Optional[Exception] = None
            for _ in range(REFERENCE_ATTEMPTS):
                application = Application(
                    applicant_id=applicant["id"],
                    type=request.type,
                    status=ApplicationStatus.SUBMITTED,
                    reference_no=generate_reference_no(request.type),
                    fee_amount=request.fee_amount or 0,
                )
                try:
                    application_id = self.store.insert_application(application)
                    break
                except ValueError as e:
                    # Reference collision on the unique index
                    last_error = e
                    logger.warning("Reference number collision, regenerating",
                                   extra={"reference_no": application.reference_no})
            else:
                span.set_status(Status(StatusCode.ERROR, "reference generation failed"))
                raise last_error

            span.set_attributes({
                "application.id": application_id,
                "application.reference_no": application.reference_no
            })
            logger.info(
                "Application submitted",
                extra={
                    "application_id": application_id,
                    "reference_no": application.reference_no,
                    "type": request.type
                }
            )

            return {
                "id": application_id,
                "reference_no": application.reference_no,
                "status": ApplicationStatus.SUBMITTED.value,
            }

    def applications_for_email(self, email: str) -> List[Dict[str, Any]]:
        """Applications of the applicant with ``email``, newest first; empty when unknown."""
        applicant = self.store.find_applicant_by_email(email)
        if not applicant:
            return []
        return self.store.list_for_applicant(applicant["id"])

    def all_applications(self) -> List[Dict[str, Any]]:
        """Every application, newest first."""
        return self.store.list_recent()

    def transition(self, application_id: str, target_status, notify: bool = False,
                   actor: Optional[str] = None) -> TransitionOutcome:
        """
        Move one application to ``target_status``.

        Args:
            application_id: Application to change
            target_status: New status value
            notify: Send an SMS to the applicant after the write
            actor: Email of the acting user, for the audit trail

        Returns:
            TransitionOutcome with the primary result and side effect attempts

        Raises:
            InvalidStatusError: Before any read or write, for unknown values
            ApplicationNotFoundError: If the application does not exist
        """
        status = parse_status(target_status)

        with tracer.start_as_current_span("workflow.transition") as span:
            span.set_attributes({
                "application.id": application_id,
                "application.target_status": status.value,
                "workflow.notify": notify
            })

            application = self.store.get_application(application_id)
            if application is None:
                span.set_status(Status(StatusCode.ERROR, "not found"))
                raise ApplicationNotFoundError(application_id)

            previous = application.get("status")
            if not is_nominal_transition(previous, status.value):
                logger.info(
                    "Non-nominal status transition",
                    extra={"application_id": application_id, "from": previous, "to": status.value}
                )

            if not self.store.set_status(application_id, status.value):
                raise ApplicationNotFoundError(application_id)

            outcome = TransitionOutcome(
                application_id=application_id,
                status=status.value,
                previous_status=previous,
            )
            self._audit(actor, application_id, previous, status.value)

            if notify:
                attempt = self._notify_applicant(application, status.value)
                if attempt is not None:
                    outcome.side_effects.append(attempt)

            logger.info(
                "Application status updated",
                extra={
                    "application_id": application_id,
                    "from": previous,
                    "to": status.value,
                    "side_effects": len(outcome.side_effects)
                }
            )
            return outcome

    def cascade_payment(self, external_ref: str) -> Optional[TransitionOutcome]:
        """
        Settle a payment and move its application to ``under_review``.

        The move happens from any current status. Repeated deliveries for
        the same reference write the same values again.

        Args:
            external_ref: Gateway reference of the payment

        Returns:
            TransitionOutcome of the application, or None for unknown references
        """
        with tracer.start_as_current_span("workflow.cascade_payment") as span:
            span.set_attribute("payment.external_ref", external_ref)

            payment = self.store.mark_payment_paid(external_ref)
            if payment is None:
                logger.warning("Payment callback for unknown reference", extra={"external_ref": external_ref})
                return None

            application_id = payment["application_id"]
            application = self.store.get_application(application_id)
            previous = application.get("status") if application else None

            target = ApplicationStatus.UNDER_REVIEW.value
            if not self.store.set_status(application_id, target):
                logger.error(
                    "Paid payment references a missing application",
                    extra={"external_ref": external_ref, "application_id": application_id}
                )
                return None

            self._audit(None, application_id, previous, target, action="payment_received")
            logger.info(
                "Payment settled",
                extra={"external_ref": external_ref, "application_id": application_id, "from": previous}
            )
            return TransitionOutcome(application_id=application_id, status=target, previous_status=previous)

    def _notify_applicant(self, application: Dict[str, Any], status: str) -> Optional[SideEffectAttempt]:
        """Send the status SMS; never raises."""
        try:
            applicant = self.store.get_applicant(application.get("applicant_id"))
        except Exception as e:
            logger.error(f"Applicant lookup for notification failed: {str(e)}")
            return SideEffectAttempt(kind="sms", target=None, success=False, error=str(e))

        phone = (applicant or {}).get("phone")
        if not phone:
            logger.info("No phone on file, skipping notification",
                        extra={"application_id": application.get("id")})
            return None

        message = build_status_message(application_reference(application), status, self.sms_sender)
        if self.sms_client is None:
            return SideEffectAttempt(kind="sms", target=phone, success=False, error="SMS client not configured")

        try:
            self.sms_client.send(phone, message)
        except Exception as e:
            logger.warning(
                "Status notification failed",
                extra={"application_id": application.get("id"), "error": str(e)}
            )
            return SideEffectAttempt(kind="sms", target=phone, success=False, error=str(e))

        return SideEffectAttempt(kind="sms", target=phone, success=True)

    def _audit(self, actor: Optional[str], application_id: str, previous: Optional[str],
               status: str, action: str = "status_change") -> None:
        if self.audit_service is None:
            return
        self.audit_service.log_action(
            actor,
            "application",
            application_id,
            action,
            before={"status": previous},
            after={"status": status},
        )
