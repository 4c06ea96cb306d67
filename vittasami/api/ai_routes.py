"""
AI-assisted differential diagnosis suggestions.
"""

from flask import jsonify

from vittasami.diagnosis import suggest_diagnosis
from vittasami.api.auth import feature_required, json_body, roles_required, token_required


def register_ai_routes(app, llm):

    @app.route("/api/ai/suggest-diagnosis", methods=["POST"])
    @token_required
    @roles_required("super_admin", "admin_tenant", "doctor")
    @feature_required("ai_suggestions")
    def diagnosis_suggestions():
        return jsonify(suggest_diagnosis(llm, json_body())), 200
