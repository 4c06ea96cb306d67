"""
AI-assisted differential diagnosis suggestions from a list of symptoms.

Suggestions are guidance only and always travel with MEDICAL_DISCLAIMER.
"""

import json
import re
import sys
from typing import Any, Dict, List, Optional

from langchain_openai import ChatOpenAI
from langchain_core.messages import HumanMessage, SystemMessage

from vittasami.config import MAX_DIAGNOSIS_SUGGESTIONS
from vittasami.errors import InternalError, ServiceUnavailable, ValidationError
from vittasami.models import DiagnosisSuggestion

CONFIDENCE_SCORES = {"high": 0.85, "medium": 0.65, "low": 0.4}
DEFAULT_SUGGESTIONS = 5
GENDER_LABELS = {"M": "Masculino", "F": "Femenino", "other": "Otro"}

MEDICAL_DISCLAIMER = (
    "AVISO IMPORTANTE: Las sugerencias de diagnóstico generadas por IA son únicamente "
    "orientativas y NO constituyen un diagnóstico médico. Estas sugerencias deben ser "
    "evaluadas y validadas por un profesional de la salud calificado. No tome decisiones "
    "médicas basándose únicamente en estas sugerencias."
)

DIAGNOSIS_SYSTEM_PROMPT = (
    "Eres un asistente médico especializado en diagnóstico diferencial.\n"
    "Tu tarea es sugerir posibles diagnósticos basándote en los síntomas proporcionados.\n\n"
    "ADVERTENCIAS IMPORTANTES:\n"
    "1. Estas son SUGERENCIAS, no diagnósticos definitivos\n"
    "2. Siempre requieren validación por un médico profesional\n"
    "3. No reemplaza el juicio clínico\n\n"
    "INSTRUCCIONES:\n"
    "- Sugiere diagnósticos ordenados por probabilidad\n"
    "- Incluye código CIE-10 cuando sea posible (ej: I10, E11.9)\n"
    "- Indica nivel de confianza: low (<50%), medium (50-75%), high (>75%)\n"
    "- Explica brevemente el razonamiento\n"
    "- Sugiere diagnósticos diferenciales y pruebas diagnósticas relevantes\n"
    "- Responde SIEMPRE en español\n"
    "- Responde SOLO con JSON válido, con este formato:\n"
    '{"suggestions": [{"diagnosis": "...", "icd10Code": "... o null", '
    '"confidence": "low|medium|high", "reasoning": "...", '
    '"differentialDiagnoses": ["..."], "recommendedTests": ["..."]}]}'
)


def validate_request(data: Dict[str, Any]) -> Dict[str, Any]:
    symptoms = data.get("symptoms")
    if not isinstance(symptoms, list) or not [s for s in symptoms if str(s).strip()]:
        raise ValidationError("At least one symptom required")

    max_suggestions = data.get("max_suggestions", DEFAULT_SUGGESTIONS)
    try:
        max_suggestions = int(max_suggestions)
    except (TypeError, ValueError):
        raise ValidationError("max_suggestions must be an integer")
    if not 1 <= max_suggestions <= MAX_DIAGNOSIS_SUGGESTIONS:
        raise ValidationError(f"max_suggestions must be between 1 and {MAX_DIAGNOSIS_SUGGESTIONS}")

    context = data.get("patient_context") or {}
    if not isinstance(context, dict):
        raise ValidationError("patient_context must be an object")

    return {
        "symptoms": [str(s).strip() for s in symptoms if str(s).strip()],
        "clinical_text": data.get("clinical_text"),
        "patient_context": context,
        "max_suggestions": max_suggestions,
    }


def build_prompt(symptoms: List[str], clinical_text: Optional[str],
                 patient_context: Dict[str, Any], max_suggestions: int) -> str:
    lines = [
        f"Analiza los siguientes síntomas y sugiere hasta {max_suggestions} posibles diagnósticos:",
        "",
        "SÍNTOMAS:",
    ]
    lines += [f"{i}. {s}" for i, s in enumerate(symptoms, start=1)]
    if clinical_text:
        lines += ["", "TEXTO CLÍNICO ADICIONAL:", f'"{clinical_text}"']
    if patient_context:
        lines += ["", "CONTEXTO DEL PACIENTE:"]
        if patient_context.get("age"):
            lines.append(f"- Edad: {patient_context['age']} años")
        if patient_context.get("gender") in GENDER_LABELS:
            lines.append(f"- Género: {GENDER_LABELS[patient_context['gender']]}")
        for key, label in (("known_conditions", "Condiciones conocidas"),
                           ("current_medications", "Medicamentos actuales"),
                           ("allergies", "Alergias")):
            if patient_context.get(key):
                lines.append(f"- {label}: {', '.join(patient_context[key])}")
    lines += ["", "Responde SOLO con JSON válido."]
    return "\n".join(lines)


def strip_fences(text: str) -> str:
    """Return the body of a ```json fenced block, or *text* unchanged."""
    match = re.search(r"```(?:json)?\s*([\s\S]*?)```", text, re.IGNORECASE)
    return (match.group(1) if match else text).strip()


def parse_suggestions(raw: str, max_suggestions: int) -> List[DiagnosisSuggestion]:
    try:
        payload = json.loads(strip_fences(raw))
    except json.JSONDecodeError:
        raise ValueError("Failed to parse AI response")
    items = payload.get("suggestions") if isinstance(payload, dict) else None
    if not isinstance(items, list):
        raise ValueError("Failed to parse AI response")

    suggestions = []
    for item in items:
        if not isinstance(item, dict) or not item.get("diagnosis"):
            continue
        confidence = str(item.get("confidence") or "low").lower()
        if confidence not in CONFIDENCE_SCORES:
            confidence = "low"
        code = item.get("icd10Code") or item.get("icd10_code")
        suggestions.append(DiagnosisSuggestion(
            diagnosis=str(item["diagnosis"]),
            icd10_code=str(code).upper() if code and str(code).lower() != "null" else None,
            confidence=confidence,
            confidence_score=CONFIDENCE_SCORES[confidence],
            reasoning=str(item.get("reasoning") or ""),
            differential_diagnoses=list(item.get("differentialDiagnoses") or []),
            recommended_tests=list(item.get("recommendedTests") or []),
        ))

    suggestions.sort(key=lambda s: s.confidence_score, reverse=True)
    return suggestions[:max_suggestions]


def suggest_diagnosis(llm: Optional[ChatOpenAI], data: Dict[str, Any]) -> Dict[str, Any]:
    """Validate the request, ask the model and return ranked suggestions."""
    if llm is None:
        raise ServiceUnavailable("AI provider not configured")
    request = validate_request(data)

    system = SystemMessage(content=DIAGNOSIS_SYSTEM_PROMPT)
    human = HumanMessage(content=build_prompt(
        request["symptoms"], request["clinical_text"],
        request["patient_context"], request["max_suggestions"],
    ))
    resp = llm.invoke([system, human])
    try:
        suggestions = parse_suggestions(resp.content, request["max_suggestions"])
    except ValueError as e:
        print(f"[ERROR] {e}: {resp.content[:160]}...", file=sys.stderr)
        raise InternalError("Failed to parse AI response")

    return {
        "suggestions": [s.to_dict() for s in suggestions],
        "disclaimer": MEDICAL_DISCLAIMER,
        "model": getattr(llm, "model_name", None),
    }
