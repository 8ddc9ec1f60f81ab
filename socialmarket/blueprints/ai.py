"""AI blueprint — /api/v1/ai/*

Thin proxies over the configured AI provider. Provider failures are logged
here and surfaced as EXTERNAL_API_ERROR.

Routes:
- POST /api/v1/ai/chat            — "ai_chat" tier
- POST /api/v1/ai/generate-image  — "ai_image" tier
- POST /api/v1/ai/moderate        — flagged results are logged
- POST /api/v1/ai/embeddings
"""

import logging

from flask import Blueprint, g, jsonify, request

from socialmarket.decorators import login_required, rate_limit
from socialmarket.errors import ExternalApiError
from socialmarket.extensions import ai_provider, db
from socialmarket.models.moderation import ModerationLog
from socialmarket.schemas import ChatSchema, EmbeddingsSchema, GenerateImageSchema, ModerateSchema
from socialmarket.services.ai_service import AIProviderError
from socialmarket.validation import validate_body

logger = logging.getLogger(__name__)

ai_bp = Blueprint("ai", __name__, url_prefix="/api/v1/ai")


@ai_bp.route("/chat", methods=["POST"])
@login_required
@rate_limit("ai_chat")
def chat():
    data = validate_body(ChatSchema, request.get_json(silent=True))
    logger.info(f"AI chat request from {g.user_id} ({len(data.messages)} messages)")

    try:
        reply = ai_provider.chat_completion(
            [m.model_dump() for m in data.messages],
            temperature=data.temperature,
            max_tokens=data.max_tokens,
        )
    except AIProviderError as e:
        logger.error(f"Chat completion failed for {g.user_id}: {e}")
        raise ExternalApiError("Failed to generate response") from e

    return jsonify({"response": reply})


@ai_bp.route("/generate-image", methods=["POST"])
@login_required
@rate_limit("ai_image")
def generate_image():
    data = validate_body(GenerateImageSchema, request.get_json(silent=True))

    try:
        image = ai_provider.generate_image(data.prompt, width=data.width, height=data.height)
    except AIProviderError as e:
        logger.error(f"Image generation failed for {g.user_id}: {e}")
        raise ExternalApiError("Failed to generate image") from e

    return jsonify({"image": image})


@ai_bp.route("/moderate", methods=["POST"])
@login_required
def moderate():
    data = validate_body(ModerateSchema, request.get_json(silent=True))

    try:
        result = ai_provider.moderate(data.text)
    except AIProviderError as e:
        logger.error(f"Moderation failed: {e}")
        raise ExternalApiError("Failed to moderate content") from e

    if result["flagged"]:
        db.session.add(ModerationLog(
            user_id=g.user_id,
            content_type=data.content_type,
            content_text=data.text[:500],
            flagged=True,
            categories=result["categories"],
        ))
        db.session.commit()
        logger.info(f"Flagged {data.content_type} from {g.user_id}: {result['categories']}")

    return jsonify({
        "approved": not result["flagged"],
        "flagged": result["flagged"],
        "categories": result["categories"],
    })


@ai_bp.route("/embeddings", methods=["POST"])
@login_required
def embeddings():
    data = validate_body(EmbeddingsSchema, request.get_json(silent=True))

    try:
        vector = ai_provider.embed(data.text)
    except AIProviderError as e:
        logger.error(f"Embedding failed: {e}")
        raise ExternalApiError("Failed to create embedding") from e

    return jsonify({"embedding": vector, "dimensions": len(vector)})
