"""Prompt construction for the diagnosis model."""

from __future__ import annotations

from symptra.schemas import Demographics, DiagnosisRequest, Vitals, WearableSummary

NOT_PROVIDED = "Not provided"

SAFETY_RULES = (
    "1. For 'Routine' urgency cases, you may suggest common Over-The-Counter (OTC) medications "
    "(e.g., Paracetamol, Ibuprofen, Antacids). Never suggest OTC medications for 'Urgent' or 'Emergency' cases.",
    "2. NEVER suggest prescription-only medications (e.g., Antibiotics, Steroids, Opioids).",
    '3. NEVER provide dosage instructions (e.g., "take 500mg every 4 hours").',
    '4. If symptoms are too vague or contradictory, set the "inconclusive" flag to true.',
)

RESPONSE_SCHEMA = """Provide the response in a structured JSON format with the following keys:
- summary: A brief overview of the assessment.
- inconclusive: boolean (true if symptoms are too vague or contradictory).
- possibleConditions: An array of objects, each with:
  - condition: Name of the condition.
  - probability: A probability label (e.g., "High", "Moderate", "Low" or a percentage string).
  - description: One or two sentences describing the condition.
  - urgency: One of 'Routine', 'Urgent', 'Emergency'.
  - probableSpecialty: The type of medical specialist the patient should see (e.g., 'Cardiologist', 'Dermatologist', 'General Practitioner').
  - commonSymptoms: Array of strings.
  - nextSteps: Array of strings.
  - otcSuggestions: Array of strings (ONLY for 'Routine' cases, otherwise empty).
  - pharmacyLinks: Array of objects with { name, url } (major pharmacies such as CVS, Walgreens or Amazon Pharmacy for the suggested OTC medications).
- disclaimer: A medical disclaimer."""


def _or_placeholder(value: str | None, placeholder: str = NOT_PROVIDED) -> str:
    return value if value else placeholder


def demographics_block(demographics: Demographics | None) -> str:
    demographics = demographics or Demographics()
    return (
        "Patient Demographics:\n"
        f"- Age: {_or_placeholder(demographics.age)}\n"
        f"- Gender: {_or_placeholder(demographics.gender)}\n"
        f"- Pre-existing Conditions: {_or_placeholder(demographics.pre_existing_conditions, 'None reported')}"
    )


def vitals_block(vitals: Vitals | None) -> str:
    vitals = vitals or Vitals()
    return (
        "Vitals:\n"
        f"- Temperature: {_or_placeholder(vitals.temperature)}\n"
        f"- Blood Pressure: {_or_placeholder(vitals.blood_pressure)}\n"
        f"- Heart Rate: {_or_placeholder(vitals.heart_rate)}\n"
        f"- SpO2: {_or_placeholder(vitals.sp_o2)}"
    )


def wearable_block(wearable: WearableSummary | None) -> str:
    if wearable is None or wearable.is_empty:
        return f"Wearable Data (Last 7 Days Avg): {NOT_PROVIDED}"

    lines = ["Wearable Data (Last 7 Days Avg):"]
    # Aggregates without data are left out rather than reported as zero.
    if wearable.avg_steps is not None:
        lines.append(f"- Steps: {round(wearable.avg_steps)}")
    if wearable.avg_heart_rate is not None:
        lines.append(f"- Heart Rate: {round(wearable.avg_heart_rate)} bpm")
    if wearable.sleep_hours is not None:
        lines.append(f"- Sleep: {wearable.sleep_hours:.1f} hours/night")
    return "\n".join(lines)


def build_diagnosis_prompt(request: DiagnosisRequest) -> str:
    sections = [
        "Analyze the following symptoms, vitals, patient demographics, and wearable data "
        "to provide a preliminary diagnostic assessment.",
        f"Symptoms: {', '.join(request.symptoms)}",
        demographics_block(request.demographics),
        vitals_block(request.vitals),
        wearable_block(request.wearable_data),
        f"Additional Context: {_or_placeholder(request.additional_info, 'None provided')}",
        "CRITICAL SAFETY RULES:\n" + "\n".join(SAFETY_RULES),
        RESPONSE_SCHEMA,
    ]
    return "\n\n".join(sections)
