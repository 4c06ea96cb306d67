"""
Tests for AI diagnosis suggestions (the chat model is faked).
"""

import json

import pytest

from vittasami.api.app import create_app
from vittasami.diagnosis import (
    MEDICAL_DISCLAIMER,
    build_prompt,
    parse_suggestions,
    strip_fences,
    suggest_diagnosis,
    validate_request,
)
from vittasami.errors import InternalError, ServiceUnavailable, ValidationError
from vittasami.tenants import create_tenant


# ── Helpers / Fakes ──────────────────────────────────────────────────

class FakeMessage:
    def __init__(self, content):
        self.content = content


class FakeLLM:
    model_name = "fake-model"

    def __init__(self, content):
        self.content = content
        self.calls = []

    def invoke(self, messages):
        self.calls.append(messages)
        return FakeMessage(self.content)


RESPONSE = json.dumps({"suggestions": [
    {"diagnosis": "Faringitis viral", "icd10Code": "j02.9", "confidence": "medium",
     "reasoning": "Odinofagia sin exudado", "differentialDiagnoses": ["Amigdalitis"],
     "recommendedTests": ["Hisopado"]},
    {"diagnosis": "Amigdalitis estreptocócica", "icd10Code": "J03.0", "confidence": "high",
     "reasoning": "Fiebre y exudado"},
    {"diagnosis": "Mononucleosis", "icd10Code": "null", "confidence": "unsure"},
    {"icd10Code": "X00"},
]})


# ── Tests: parsing ───────────────────────────────────────────────────

def test_strip_fences():
    assert strip_fences('```json\n{"a": 1}\n```') == '{"a": 1}'
    assert strip_fences("```\n[]\n```") == "[]"
    assert strip_fences('  {"a": 1} ') == '{"a": 1}'


def test_parse_suggestions_sorted_and_scored():
    suggestions = parse_suggestions(f"```json\n{RESPONSE}\n```", 5)
    assert [s.diagnosis for s in suggestions] == ["Amigdalitis estreptocócica", "Faringitis viral", "Mononucleosis"]
    assert [s.confidence_score for s in suggestions] == [0.85, 0.65, 0.4]
    assert suggestions[1].icd10_code == "J02.9"
    assert suggestions[2].icd10_code is None
    assert suggestions[2].confidence == "low"
    assert suggestions[1].differential_diagnoses == ["Amigdalitis"]


def test_parse_suggestions_limit():
    assert len(parse_suggestions(RESPONSE, 1)) == 1


@pytest.mark.parametrize("raw", ["not json", "[1, 2]", '{"suggestions": "none"}'])
def test_parse_suggestions_invalid(raw):
    with pytest.raises(ValueError):
        parse_suggestions(raw, 5)


# ── Tests: request validation ────────────────────────────────────────

@pytest.mark.parametrize("data", [
    {},
    {"symptoms": []},
    {"symptoms": ["  "]},
    {"symptoms": "fiebre"},
    {"symptoms": ["fiebre"], "max_suggestions": 0},
    {"symptoms": ["fiebre"], "max_suggestions": 11},
    {"symptoms": ["fiebre"], "max_suggestions": "many"},
    {"symptoms": ["fiebre"], "patient_context": ["age"]},
])
def test_validate_request_rejects(data):
    with pytest.raises(ValidationError):
        validate_request(data)


def test_validate_request_defaults():
    request = validate_request({"symptoms": [" fiebre ", "tos"]})
    assert request["symptoms"] == ["fiebre", "tos"]
    assert request["max_suggestions"] == 5
    assert request["patient_context"] == {}


def test_build_prompt_includes_context():
    prompt = build_prompt(["fiebre"], "Paciente con 3 días de fiebre",
                          {"age": 34, "gender": "F", "allergies": ["penicilina"]}, 3)
    assert "hasta 3 posibles" in prompt
    assert "1. fiebre" in prompt
    assert "- Edad: 34 años" in prompt
    assert "- Género: Femenino" in prompt
    assert "- Alergias: penicilina" in prompt


# ── Tests: suggest_diagnosis ─────────────────────────────────────────

def test_suggest_diagnosis():
    llm = FakeLLM(RESPONSE)
    result = suggest_diagnosis(llm, {"symptoms": ["dolor de garganta", "fiebre"], "max_suggestions": 2})
    assert [s["diagnosis"] for s in result["suggestions"]] == ["Amigdalitis estreptocócica", "Faringitis viral"]
    assert result["disclaimer"] == MEDICAL_DISCLAIMER
    assert result["model"] == "fake-model"
    system, human = llm.calls[0]
    assert "diagnóstico diferencial" in system.content
    assert "dolor de garganta" in human.content


def test_suggest_diagnosis_without_llm():
    with pytest.raises(ServiceUnavailable):
        suggest_diagnosis(None, {"symptoms": ["fiebre"]})


def test_suggest_diagnosis_unparseable():
    with pytest.raises(InternalError):
        suggest_diagnosis(FakeLLM("Lo siento, no puedo ayudar."), {"symptoms": ["fiebre"]})


# ── Tests: endpoint ──────────────────────────────────────────────────

def test_endpoint_returns_suggestions(engine, doctor, auth_headers):
    client = create_app(engine=engine, llm=FakeLLM(RESPONSE)).test_client()
    resp = client.post("/api/ai/suggest-diagnosis", headers=auth_headers(doctor),
                       json={"symptoms": ["fiebre"]})
    assert resp.status_code == 200
    assert len(resp.get_json()["suggestions"]) == 3


def test_endpoint_without_llm(client, auth_headers, doctor):
    resp = client.post("/api/ai/suggest-diagnosis", headers=auth_headers(doctor), json={"symptoms": ["fiebre"]})
    assert resp.status_code == 503


def test_endpoint_forbidden_roles(client, auth_headers, receptionist):
    resp = client.post("/api/ai/suggest-diagnosis", headers=auth_headers(receptionist),
                       json={"symptoms": ["fiebre"]})
    assert resp.status_code == 403


def test_endpoint_free_plan(engine, make_user, auth_headers):
    free = create_tenant(engine, "Consultorio Libre")
    doctor = make_user("doctor", tenant_id=free["id"])
    client = create_app(engine=engine, llm=FakeLLM(RESPONSE)).test_client()
    resp = client.post("/api/ai/suggest-diagnosis", headers=auth_headers(doctor), json={"symptoms": ["fiebre"]})
    assert resp.status_code == 403
    assert resp.get_json()["code"] == "FEATURE_NOT_AVAILABLE"
