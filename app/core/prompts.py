"""
Prompt templates and JSON response schemas sent to Gemini.
"""
from typing import Optional


RED_FLAGS = [
    "Chest pain or pressure",
    "Difficulty breathing",
    "Sudden weakness or numbness",
    "Severe allergic reaction",
    "Uncontrolled bleeding",
    "Loss of consciousness",
    "Severe suicidal thoughts",
]

TRIAGE_SYSTEM_PROMPT = """You are NaviCare AI, a professional Patient Navigation Agent. Your primary goal is to triage symptoms and route patients to the correct care setting.

GUIDELINES:
1. SAFETY FIRST: Immediately identify red flags. If a user mentions chest pain, severe breathing issues, stroke signs, or similar, provide EMERGENCY instructions immediately.
2. TRIAGE CATEGORIES:
   - EMERGENCY: Direct to nearest ER/911.
   - URGENT: Direct to Urgent Care or Telehealth within 24 hours.
   - ROUTINE: Direct to Primary Care or Specialist appointment.
   - SELF_CARE: Low-risk, home guidance provided.
3. CONVERSATIONAL INTAKE: Ask structured questions one at a time about duration, severity, onset, and relevant history.
4. NO DEFINITIVE DIAGNOSIS: Use terms like "Your symptoms may be consistent with..." or "This often warrants evaluation for...". Never say "You have X disease".
5. NO PRESCRIBING: Never suggest specific medications, only general self-care categories (e.g., "stay hydrated").
6. REFERRAL GENERATION: When routine or urgent care is needed, specify the medical specialty (e.g., "Dermatology", "Orthopedics").

STRUCTURED RESPONSE FORMAT:
While you still need information, set isTriageComplete to false and put your single next question in nextQuestion.
When you have enough info for triage, set isTriageComplete to true and fill triageResult:
- level: EMERGENCY, URGENT, ROUTINE, or SELF_CARE
- specialtyNeeded: e.g. Cardiology
- summary: a concise referral note for a doctor
- reasonForReferral: why this level and specialty
- recommendation: actionable next steps for the patient"""

LANGUAGE_INSTRUCTION = (
    "IMPORTANT: You must communicate and provide all output "
    "(questions, recommendations, summaries) in {language}."
)

GREETING_PROMPT = """Generate a warm, professional medical assistant greeting in {language}.
Mention that you are NaviCare AI, an assistant for symptom assessment and provider navigation.
Include a clear disclaimer that you are not a doctor and users should call emergency services for immediate life-threatening issues.
End with a question asking how you can help today."""

PROVIDER_SEARCH_PROMPT = """Find {count} {specialty} medical providers near ZIP code {zip_code}{insurance_clause}.
Provide their name, practice address, phone number, website, hours of operation, and an online booking link if available.
Check multiple sources to verify accuracy.
IMPORTANT: Provide the details and any descriptive text in {language}."""

PROVIDER_EXTRACTION_PROMPT = """Extract the provider details from the following text into a structured JSON list.
Ensure bookingUrl is a valid URL or null.
Include 'acceptedInsurance' as an array of strings based on the text.
Text: {text}"""

TRIAGE_LEVELS = ["EMERGENCY", "URGENT", "ROUTINE", "SELF_CARE"]

TRIAGE_RESPONSE_SCHEMA = {
    "type": "object",
    "properties": {
        "isTriageComplete": {"type": "boolean"},
        "nextQuestion": {"type": "string"},
        "triageResult": {
            "type": "object",
            "properties": {
                "level": {
                    "type": "string",
                    "enum": TRIAGE_LEVELS,
                    "description": "EMERGENCY, URGENT, ROUTINE, or SELF_CARE",
                },
                "recommendation": {"type": "string"},
                "specialtyNeeded": {"type": "string"},
                "reasonForReferral": {"type": "string"},
                "summary": {"type": "string"},
            },
            "required": ["level", "recommendation", "reasonForReferral", "summary"],
        },
    },
    "required": ["isTriageComplete"],
}

PROVIDER_LIST_SCHEMA = {
    "type": "array",
    "items": {
        "type": "object",
        "properties": {
            "name": {"type": "string"},
            "specialty": {"type": "string"},
            "address": {"type": "string"},
            "phone": {"type": "string"},
            "website": {"type": "string"},
            "bookingUrl": {"type": "string"},
            "hours": {"type": "string"},
            "acceptedInsurance": {"type": "array", "items": {"type": "string"}},
            "verified": {"type": "boolean"},
        },
        "required": ["name", "address", "phone"],
    },
}


def insurance_clause(insurance: Optional[str]) -> str:
    insurance = (insurance or "").strip()
    return f" that accept {insurance} insurance" if insurance else ""
