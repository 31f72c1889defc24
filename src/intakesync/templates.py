"""
Initial form data for each wizard.

These templates are the current schema: migration fills any field
missing from an older saved draft with the value found here. The form
layer owns the meaning of every field; the core only needs the shape.
"""

from __future__ import annotations

import copy
from typing import Any, Optional

from .models import Draft, DraftType, utc_now_iso


def _consent_flag() -> dict[str, Any]:
    return {"checked": False, "timestamp": ""}


ASSESSMENT_TEMPLATE: dict[str, Any] = {
    "clientHelpList": {
        "clientName": "",
        "dateOfBirth": "",
        "clientAddress": "",
        "clientPhone": "",
        "date": "",
        "emergencyContacts": [],
        "doctors": [],
        "hospitals": [],
        "neighborName": "",
        "neighborPhone": "",
    },
    "clientHistory": {
        "clientName": "",
        "date": "",
        "age": "",
        "assessmentReason": "",
        "preferredTimes": [],
        "healthHistory": [],
        "otherProviders": [],
    },
    "clientAssessment": {
        "clientName": "",
        "date": "",
        "assessmentType": "",
        "bathing": [],
        "dressing": [],
        "mobility": [],
    },
    "medicationList": {
        "clientName": "",
        "medications": [],
        "noMedications": False,
    },
    "consent": {
        "clientName": "",
        "date": "",
        "clientAddress": "",
        "age": "",
        "signerName": "",
        "hipaaConsent": _consent_flag(),
        "benefitsConsent": _consent_flag(),
        "hipaaSignature": "",
        "benefitsSignature": "",
    },
}

SERVICE_CONTRACT_TEMPLATE: dict[str, Any] = {
    "serviceAgreement": {
        "date": "",
        "customerInfo": {
            "firstName": "",
            "lastName": "",
            "address": "",
            "phone": "",
        },
        "frequency": {
            "monday": False,
            "tuesday": False,
            "wednesday": False,
            "thursday": False,
            "friday": False,
            "saturday": False,
            "sunday": False,
            "orAsRequested": False,
            "duration": "",
            "daySchedules": {},
        },
        "assignedCaregiver": "",
        "clientSignature": "",
    },
    "termsConditions": {
        "nonSolicitationInitial": "",
        "termsOfPaymentInitial": "",
        "cardSurchargeInitial": "",
        "terminationInitial": "",
        "authorizationConsentInitial": "",
        "relatedDocumentsInitial": "",
    },
    "consumerRights": {
        "consumerName": "",
        "acknowledgeSignature": "",
        "acknowledgeDate": "",
    },
    "customerPacket": {
        "acknowledgeHipaa": _consent_flag(),
        "acknowledgeHiringStandards": _consent_flag(),
        "acknowledgeSignature": "",
    },
}

_TEMPLATES = {
    DraftType.ASSESSMENT: ASSESSMENT_TEMPLATE,
    DraftType.SERVICE_CONTRACT: SERVICE_CONTRACT_TEMPLATE,
}


def initial_data(draft_type: DraftType) -> dict[str, Any]:
    """Return a fresh copy of the template for a wizard."""
    return copy.deepcopy(_TEMPLATES[DraftType(draft_type)])


def new_draft(
    draft_type: DraftType,
    client_name: str = "",
    linked_assessment_id: Optional[str] = None,
) -> Draft:
    """Create an in-memory draft at step 0 from the template."""
    return Draft(
        client_name=client_name,
        type=DraftType(draft_type),
        data=initial_data(draft_type),
        last_modified=utc_now_iso(),
        linked_assessment_id=linked_assessment_id,
    )
