import logging
from typing import Any

from dotenv import load_dotenv
from flask import Blueprint, Flask, current_app, jsonify, request
from flask_cors import CORS
from pydantic import ValidationError as PydanticValidationError
from werkzeug.exceptions import InternalServerError

from gateway.api.auth import require_api_key
from gateway.api.config import AppConfig, get_app_config
from gateway.api.schemas import DraftRequest, DraftUpdateRequest, GetUrlQuery
from gateway.config import env_bool, load_registry_config
from gateway.core.orchestrators import ExportError, ExportOutcome, ExportService, build_export_service
from gateway.core.payload import CompilationAborted, DocumentShapeError
from gateway.core.registry import AccessTokenManager, RegistryUnavailable, TokenAcquisitionError
from gateway.core.store import IncidentStore, StoreError

load_dotenv()

logger = logging.getLogger(__name__)

eccairs_bp = Blueprint("eccairs", __name__, url_prefix="/api/eccairs")
e2_bp = Blueprint("e2", __name__, url_prefix="/api/e2")


def _service() -> ExportService:
    return current_app.extensions["export_service"]


def _error(status: int, message: str, **extra: Any):
    return jsonify({"ok": False, "error": message, **extra}), status


def _first_error(exc: PydanticValidationError) -> str:
    err = exc.errors()[0]
    location = ".".join(str(part) for part in err.get("loc", ()))
    return f"{location}: {err.get('msg')}" if location else str(err.get("msg"))


def _respond(outcome: ExportOutcome):
    return jsonify(outcome.body), outcome.status_code


@e2_bp.post("/token/test")
@require_api_key
def token_test():
    return jsonify(_service().token_test())


@eccairs_bp.post("/drafts")
@require_api_key
def create_draft():
    req = DraftRequest.model_validate(request.get_json(silent=True) or {})
    return _respond(_service().create_draft(str(req.incident_id), req.environment))


@eccairs_bp.post("/drafts/update")
@require_api_key
def update_draft():
    req = DraftUpdateRequest.model_validate(request.get_json(silent=True) or {})
    return _respond(
        _service().update_draft(str(req.incident_id), req.environment, req.version_type)
    )


@eccairs_bp.post("/submit")
@require_api_key
def submit():
    req = DraftRequest.model_validate(request.get_json(silent=True) or {})
    return _respond(_service().submit(str(req.incident_id), req.environment))


@eccairs_bp.post("/delete")
@require_api_key
def delete_draft():
    req = DraftRequest.model_validate(request.get_json(silent=True) or {})
    return _respond(_service().delete_draft(str(req.incident_id), req.environment))


@eccairs_bp.get("/get-url")
@require_api_key
def get_url():
    query = GetUrlQuery.model_validate(request.args.to_dict())
    return _respond(_service().get_url(query.e2_id, query.environment))


def _register_error_handlers(app: Flask) -> None:
    @app.errorhandler(PydanticValidationError)
    def _invalid_request(exc: PydanticValidationError):
        return _error(400, _first_error(exc))

    @app.errorhandler(ExportError)
    def _export_error(exc: ExportError):
        return jsonify(exc.to_body()), exc.status_code

    @app.errorhandler(CompilationAborted)
    def _compilation_aborted(exc: CompilationAborted):
        logger.error("E2_COMPILATION_ABORTED %s", exc)
        return _error(500, str(exc), meta=exc.diagnostics.to_dict())

    @app.errorhandler(TokenAcquisitionError)
    def _token_failed(exc: TokenAcquisitionError):
        logger.error("E2_TOKEN_FAILED %s", exc)
        return _error(502, str(exc), attempts=exc.errors)

    @app.errorhandler(RegistryUnavailable)
    def _registry_unavailable(exc: RegistryUnavailable):
        return _error(502, str(exc))

    @app.errorhandler(StoreError)
    def _store_error(exc: StoreError):
        logger.error("STORE_ERROR code=%s message=%s", exc.code, exc.message)
        return _error(500, exc.message, code=exc.code)

    @app.errorhandler(DocumentShapeError)
    def _document_shape(exc: DocumentShapeError):
        logger.error("E2_DOCUMENT_SHAPE_INVALID %s", exc)
        return _error(500, "Compiled document failed shape validation", details=exc.errors)

    @app.errorhandler(InternalServerError)
    def _unexpected(exc: InternalServerError):
        original = getattr(exc, "original_exception", None) or exc
        logger.error("GATEWAY_UNHANDLED_ERROR %s", original, exc_info=original)
        return _error(500, "Internal server error")


def create_app(
    app_config: AppConfig | None = None,
    service: ExportService | None = None,
) -> Flask:
    app = Flask(__name__)
    cfg = app_config or get_app_config()
    app.config["GATEWAY_APP_CONFIG"] = cfg

    if service is None:
        store = IncidentStore(cfg.db_path)
        service = build_export_service(store, AccessTokenManager(load_registry_config()))
    app.extensions["export_service"] = service

    CORS(
        app,
        resources={r"/api/*": {"origins": cfg.cors_origins}},
        allow_headers=["Content-Type", "Authorization", "X-API-Key"],
        methods=["GET", "POST", "OPTIONS"],
        max_age=86400,
    )

    @app.get("/")
    def index():
        return "ECCAIRS gateway is running"

    @app.get("/health")
    def health():
        return jsonify({"ok": True})

    app.register_blueprint(e2_bp)
    app.register_blueprint(eccairs_bp)
    _register_error_handlers(app)
    return app


if __name__ == "__main__":  # pragma: no cover - manual execution
    debug_mode = env_bool("FLASK_DEBUG", False)
    application = create_app()
    application.run(
        host="0.0.0.0",
        port=application.config["GATEWAY_APP_CONFIG"].port,
        debug=debug_mode,
    )
