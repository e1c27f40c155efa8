"""Quart application exposing document indexing and streamed answers."""
import asyncio
from pathlib import Path
from typing import Optional

import httpx
import structlog
from hypercorn.asyncio import serve
from hypercorn.config import Config as HypercornConfig
from quart import Quart, current_app, jsonify, make_response, request

from ragserve import config
from ragserve.bootstrap import build_service
from ragserve.errors import EmbeddingError, RAGError, StoreError, ValidationError
from ragserve.logging_setup import configure_logging
from ragserve.rag.service import RAGService
from ragserve.rag.streaming import format_sse

configure_logging()

logger = structlog.get_logger()

ERROR_STATUS = {
    ValidationError: 400,
    EmbeddingError: 502,
    StoreError: 500,
}


def _service() -> RAGService:
    return current_app.extensions["rag_service"]


def create_app(service: Optional[RAGService] = None) -> Quart:
    """Build the application.

    Args:
        service: Pre-built service (tests inject one); when omitted the
            shared HTTP client, FAISS store and service are created at
            start-up and closed at shutdown.
    """
    app = Quart(
        __name__,
        static_folder=str(config.WEB_DIR),
        static_url_path="/static",
    )
    app.config["MAX_CONTENT_LENGTH"] = config.MAX_UPLOAD_BYTES
    app.extensions["rag_service"] = service

    if service is None:

        @app.before_serving
        async def startup():
            http_client = httpx.AsyncClient(timeout=config.HTTP_TIMEOUT)
            app.extensions["http_client"] = http_client
            app.extensions["rag_service"] = await build_service(http_client)

            logger.info(
                "app_started",
                ollama_url=config.OLLAMA_BASE_URL,
                chat_model=config.CHAT_MODEL,
                embedding_model=config.EMBEDDING_MODEL,
            )

        @app.after_serving
        async def shutdown():
            rag_service = app.extensions.get("rag_service")
            if rag_service is not None:
                await rag_service.store.close()
            http_client = app.extensions.get("http_client")
            if http_client is not None:
                await http_client.aclose()
            logger.info("app_stopped")

    @app.route("/")
    async def index():
        """Serve the upload and ask page."""
        return await app.send_static_file("index.html")

    @app.route("/api/health")
    async def health():
        """Liveness probe - check if app is running."""
        return jsonify({"status": "ok"})

    @app.route("/api/health/ready")
    async def health_ready():
        """Readiness probe - check Ollama and the configured models."""
        checks = {
            "status": "healthy",
            "ollama": False,
            "models": False,
            "store": _service().store.get_stats(),
        }

        try:
            models = await _service().llm.list_models()
            checks["ollama"] = True

            missing = [
                m for m in (config.CHAT_MODEL, config.EMBEDDING_MODEL)
                if m not in models and f"{m}:latest" not in models
            ]
            if missing:
                checks["status"] = "unhealthy"
                checks["error"] = f"Missing models: {', '.join(missing)}"
            else:
                checks["models"] = True

        except httpx.HTTPError as e:
            logger.error("health_check_failed", error=str(e))
            checks["status"] = "unhealthy"
            checks["error"] = str(e)

        status_code = 200 if checks["status"] == "healthy" else 503
        return jsonify(checks), status_code

    @app.route("/api/upload", methods=["POST"])
    async def upload():
        """Index inline text or an uploaded .txt file.

        Multipart form fields:
            text: optional inline text
            file: optional .txt file, used in preference to text

        Returns JSON:
        {
            "ok": true,
            "source": "notes.txt",
            "fragments": 3
        }
        """
        form = await request.form
        files = await request.files

        content = ""
        source = config.INLINE_TEXT_SOURCE

        upload_file = files.get("file")
        if upload_file is not None and upload_file.filename:
            filename = Path(upload_file.filename).name
            if Path(filename).suffix.lower() not in config.ALLOWED_UPLOAD_EXTENSIONS:
                raise ValidationError("only .txt files are accepted")

            try:
                content = upload_file.read().decode("utf-8")
            except UnicodeDecodeError:
                raise ValidationError(f"{filename} is not valid UTF-8 text")
            source = filename

        if not content:
            content = form.get("text", "")
            source = config.INLINE_TEXT_SOURCE

        if not content.strip():
            raise ValidationError("no text or file provided")

        logger.info("upload_received", source=source, content_length=len(content))
        result = await _service().index_document(content, source)

        return jsonify({
            "ok": True,
            "source": result.source,
            "fragments": result.fragments_indexed,
        })

    @app.route("/api/query")
    async def query():
        """Answer a question as a Server-Sent Events stream.

        Query parameters:
            q: the question
            k: optional number of fragments to retrieve

        Each token arrives as a ``data:`` event; the stream ends with an
        ``event: done`` or ``event: error`` frame.
        """
        question = request.args.get("q", "").strip()
        if not question:
            raise ValidationError("missing parameter 'q'")

        stream = await _service().answer(question, request.args.get("k"))

        logger.info(
            "query_streaming",
            question_preview=question[:100],
            context_fragments=len(stream.fragments),
        )

        async def events():
            async for event in stream:
                yield format_sse(event).encode("utf-8")

        response = await make_response(
            events(),
            200,
            {
                "Content-Type": "text/event-stream",
                "Cache-Control": "no-cache",
            },
        )
        response.timeout = None
        return response

    @app.errorhandler(RAGError)
    async def rag_error(error: RAGError):
        """Map pipeline errors to JSON responses."""
        status_code = ERROR_STATUS.get(type(error), 500)
        log = logger.warning if status_code < 500 else logger.error
        log(
            "request_failed",
            path=request.path,
            stage=error.stage,
            fragment_index=error.fragment_index,
            error=str(error),
            error_type=type(error).__name__,
        )
        return jsonify(error.to_dict()), status_code

    @app.errorhandler(404)
    async def not_found(error):
        """Handle 404 errors."""
        return jsonify({"error": "Not found"}), 404

    @app.errorhandler(500)
    async def internal_error(error):
        """Handle 500 errors."""
        logger.error("internal_server_error", error=str(error))
        return jsonify({"error": "Internal server error"}), 500

    return app


app = create_app()


def run() -> None:
    """Serve the application with Hypercorn."""
    hypercorn_config = HypercornConfig()
    hypercorn_config.bind = [f"{config.HOST}:{config.PORT}"]
    asyncio.run(serve(app, hypercorn_config))


if __name__ == "__main__":
    run()
