"""Static proposal text for the Scope of Work and Terms & Conditions sheets."""

from typing import List


SCOPE_OF_WORK: List[str] = [
    "The scope of work includes the supply, installation, testing, and commissioning of the "
    "Audio-Visual equipment as specified in this Bill of Quantities.",
    "It covers all necessary cabling, connectors, and mounting hardware for a fully functional system.",
    "Any work not explicitly mentioned, such as civil, electrical, or network infrastructure "
    "modifications, is excluded from this scope.",
]

TERMS_AND_CONDITIONS: List[str] = [
    "1. Prices are quoted in the currency shown and taxes are itemised separately.",
    "2. Payment Terms: 50% advance, 40% on delivery, 10% on completion.",
    "3. Warranty: One year comprehensive on-site warranty for all supplied equipment from the date of handover.",
    "4. Validity: This quotation is valid for 30 days.",
]
