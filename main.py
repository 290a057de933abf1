import logging
import sys

from flask import Flask, current_app, request
from flask_restx import Api, Namespace, Resource, fields

from config import ConfigError, load_config
from relay_handler import RelayHandler
from upstream_client import UpstreamClient

MAX_BODY_BYTES = 1024 * 1024  # 1 MB

ns = Namespace("relay", description="3MT presentation feedback relay", path="/")

step_model = ns.model(
    "Step",
    {
        "position": fields.Integer(description="Position of the step in the talk"),
        "name": fields.String(description="Short step name"),
        "description": fields.String(description="What the step covers"),
    },
)

convert_model = ns.model(
    "Convert",
    {
        "text": fields.String(
            description="Text to get audience feedback on, or 'steps_reordered'"
        ),
        "steps": fields.List(
            fields.Nested(step_model),
            required=False,
            description="Reordered steps (only with text='steps_reordered')",
        ),
    },
)

HealthModel = ns.model("Health", {"status": fields.String(example="healthy")})

MessageModel = ns.model("Message", {"message": fields.String()})


@ns.route("/convert")
class ConvertEndpoint(Resource):
    @ns.expect(convert_model)
    def post(self):
        """Relay text (or reordered steps) to the LLM and return its reply verbatim"""
        # Non-JSON or malformed bodies are treated as an empty request
        payload = request.get_json(silent=True) or {}
        handler = current_app.extensions["relay_handler"]
        return handler.convert(payload)


@ns.route("/health")
class HealthEndpoint(Resource):
    @ns.marshal_with(HealthModel)
    def get(self):
        """Liveness check, independent of the upstream"""
        return {"status": "healthy"}, 200


@ns.route("/helloworld")
class HelloWorldEndpoint(Resource):
    @ns.doc(params={"message": "Say 'hello'"})
    @ns.marshal_with(MessageModel)
    def get(self):
        """Diagnostic greeting"""
        # args.get returns the first value of a repeated parameter
        if request.args.get("message") == "hello":
            return {"message": "Hello World from 3mt server"}, 200
        return {"message": "please say hello"}, 200


def create_app(config, upstream_client=None):
    app = Flask(__name__)
    app.config["MAX_CONTENT_LENGTH"] = MAX_BODY_BYTES
    app.config["ERROR_404_HELP"] = False

    # ---- Flask-RESTX API setup ----
    api = Api(
        app,
        version="1.0",
        title="3MT Relay API",
        description="Audience-style and structural feedback on 3MT presentations via an LLM",
        prefix="/api",
        doc="/docs",
    )
    api.add_namespace(ns)

    if upstream_client is None:
        upstream_client = UpstreamClient(
            config.api_url,
            app.logger,
            timeout=config.timeout,
            max_retries=config.max_retries,
        )

    app.extensions["relay_handler"] = RelayHandler(
        upstream_client, app.logger, config.model, config.api_key
    )
    return app


if __name__ == "__main__":
    logging.basicConfig(
        level=logging.INFO, format="%(asctime)s - %(levelname)s - %(message)s"
    )
    logger = logging.getLogger(__name__)

    try:
        relay_config = load_config()
    except ConfigError as e:
        logger.error(str(e))
        sys.exit(1)

    app = create_app(relay_config)
    logger.info(f"Server listening on http://{relay_config.host}:{relay_config.port}")
    app.run(host=relay_config.host, port=relay_config.port, threaded=True)
