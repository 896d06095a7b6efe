"""Flask application exposing each pipeline stage as a JSON endpoint."""

import asyncio
import logging
import threading
import time
from typing import Any, Awaitable, Callable, Dict, List, Optional

from flask import Blueprint, Flask, current_app, jsonify, request
from flask_cors import CORS
from pydantic import ValidationError

from vibecheck.libs.errors import InputError, PipelineError, UnexpectedError
from .models import GenerateResult, Issue, PromptRewrite
from .pipeline import PromptExperimentPipeline

LOG = logging.getLogger(__name__)


def create_app(pipeline: PromptExperimentPipeline) -> Flask:
    """
    Create and configure the Flask app.

    Args:
        pipeline: Pipeline whose stages back the endpoints
    """
    app = Flask(__name__)
    CORS(app)
    app.config["PIPELINE"] = pipeline
    app.config["LOOP_RUNNER"] = LoopRunner()
    app.register_blueprint(_routes())
    LOG.info("Flask app created and configured")
    return app


class LoopRunner:
    """Runs request coroutines on one event loop owned by a daemon thread.

    The gateway's HTTP clients stay bound to this loop across requests.
    """

    def __init__(self):
        self.loop = asyncio.new_event_loop()
        self._thread = threading.Thread(target=self.loop.run_forever, name="vibecheck-loop", daemon=True)
        self._thread.start()

    def run(self, coro: Awaitable[Any]) -> Any:
        return asyncio.run_coroutine_threadsafe(coro, self.loop).result()


def _pipeline() -> PromptExperimentPipeline:
    return current_app.config["PIPELINE"]


def _body() -> Dict[str, Any]:
    body = request.get_json(silent=True)
    return body if isinstance(body, dict) else {}


def _parse_issue(value: Any) -> Optional[Issue]:
    if value is None:
        return None
    try:
        return Issue.model_validate(value)
    except ValidationError as e:
        raise InputError(f"Invalid issue: {e.errors()[0]['msg']}")


def _parse_variants(value: Any) -> List[PromptRewrite]:
    if not value:
        return []
    if not isinstance(value, list):
        raise InputError("variants must be an array.")
    try:
        return [PromptRewrite.model_validate(v) for v in value]
    except ValidationError as e:
        raise InputError(f"Invalid variant: {e.errors()[0]['msg']}")


def _run_stage(stage: str, make_call: Callable[[], Awaitable[Any]], include_raw: bool = True):
    """Run a stage coroutine and map its outcome to a JSON response."""
    started = time.monotonic()
    try:
        result = current_app.config["LOOP_RUNNER"].run(make_call())
        return jsonify(result.to_response())
    except PipelineError as e:
        duration_ms = int((time.monotonic() - started) * 1000)
        LOG.warning("[%s] %s duration_ms=%d: %s", stage, type(e).__name__, duration_ms, e.message)
        return jsonify(e.to_response(include_raw=include_raw)), e.status_code
    except Exception as e:  # pylint: disable=broad-except
        duration_ms = int((time.monotonic() - started) * 1000)
        LOG.exception("[%s] error duration_ms=%d", stage, duration_ms)
        error = UnexpectedError(str(e) or "Unexpected server error.")
        return jsonify(error.to_response()), error.status_code


def _routes() -> Blueprint:
    bp = Blueprint("vibe", __name__)

    @bp.route('/api/health', methods=['GET'])
    def health():
        """Health check endpoint."""
        return jsonify({'status': 'ok', 'model': _pipeline().gateway.model_name})

    @bp.route('/api/generate', methods=['POST'])
    def generate():
        """Send a single prompt to the model and return its text."""
        body, gateway = _body(), _pipeline().gateway
        debug = bool(body.get('debug'))
        prompt = body.get('input')
        prompt = prompt.strip() if isinstance(prompt, str) else ""

        async def call():
            gateway.ensure_available()
            if not prompt:
                raise InputError("Please provide a non-empty prompt.")
            response = await gateway.invoke("", [prompt])
            return GenerateResult(text=response.text, trace=response.trace if debug else None)
        return _run_stage("generate", call)

    @bp.route('/api/vibe/extract-issues', methods=['POST'])
    def extract_issues():
        """Stage 1: extract issues from the latest (or named) dataset folder."""
        body, pipeline = _body(), _pipeline()
        return _run_stage("extract-issues", lambda: pipeline.extractor.extract_async(
            source_folder=body.get('source_folder') or None,
        ))

    @bp.route('/api/vibe/generate-variants', methods=['POST'])
    def generate_variants():
        """Stage 2: generate prompt variants for an issue."""
        body, pipeline = _body(), _pipeline()

        async def call():
            pipeline.gateway.ensure_available()
            return await pipeline.generator.generate_async(
                _parse_issue(body.get('issue')),
                source_folder=body.get('source_folder') or None,
                run_id=body.get('run_id') or None,
            )
        return _run_stage("generate-variants", call)

    @bp.route('/api/vibe/judge', methods=['POST'])
    def judge():
        """Stage 3: replay and judge variants against the baseline."""
        body, pipeline = _body(), _pipeline()

        async def call():
            pipeline.gateway.ensure_available()
            return await pipeline.judge.judge_async(
                _parse_variants(body.get('variants')),
                _parse_issue(body.get('issue')),
                run_id=body.get('run_id') or None,
                source_folder=body.get('source_folder') or None,
            )
        return _run_stage("judge", call)

    @bp.route('/api/vibe/investigation', methods=['POST'])
    def investigation():
        """Investigate one complaint against the prompt that produced it."""
        body, pipeline = _body(), _pipeline()
        debug = bool(body.get('debug'))
        use_latest = bool(body.get('useLatest') or body.get('use_latest'))
        return _run_stage("investigation", lambda: pipeline.investigator.investigate_async(
            complaint=body.get('complaint') or body.get('complaintText'),
            transcript=body.get('transcript') or body.get('conversation') or body.get('messages'),
            prompt=body.get('prompt') or body.get('systemPrompt'),
            use_latest=use_latest,
            debug=debug,
        ), include_raw=debug)

    return bp


def run_server(pipeline: PromptExperimentPipeline, host='127.0.0.1', port=5000, debug=False):
    """
    Run the Flask development server.

    Args:
        pipeline: Pipeline whose stages back the endpoints
        host: Host to bind to
        port: Port to bind to
        debug: Whether to run in debug mode
    """
    create_app(pipeline).run(host=host, port=port, debug=debug)
