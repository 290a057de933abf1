from upstream_client import UpstreamError

REORDER_TRIGGER = "steps_reordered"

REORDER_SYSTEM_PROMPT = (
    "You are helping to analyze the structure of a 3MT presentation."
)

# The first line keeps its trailing space.
AUDIENCE_SYSTEM_PROMPT = (
    "You are acting as a general audience member who is not familiar with the topic. \n"
    "1) Ask clarifying questions if something is unclear\n"
    "2) Point out parts that are hard to understand\n"
    "3) Suggest where more explanation might be needed\n"
    "4) Help make the explanation more accessible to a general audience\n"
    "\n"
    "Keep your responses conversational and focused on understanding the topic better."
)


def _field(step, name):
    """Step field as prompt text; JSON scalars render the way they were sent."""
    value = step.get(name) if isinstance(step, dict) else None
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return int(value)
    return value


class RelayHandler:
    def __init__(self, client, logger, model_name, api_key):
        self.client = client
        self.logger = logger
        self.model_name = model_name
        self.api_key = api_key

    def _headers(self):
        # The upstream expects the raw key, not "Bearer <key>"
        return {"Content-Type": "application/json", "Authorization": self.api_key}

    def _format_steps(self, steps):
        return "\n".join(
            f"{_field(s, 'position')}. {_field(s, 'name')}: {_field(s, 'description')}"
            for s in steps
        )

    def build_reorder_messages(self, steps):
        """Messages asking for feedback on a reordered list of presentation steps."""
        steps_text = self._format_steps(steps)
        return [
            {"role": "system", "content": REORDER_SYSTEM_PROMPT},
            {
                "role": "user",
                "content": f"The steps have been reordered to:\n\n{steps_text}\n\n"
                "Please provide feedback on this structure.",
            },
        ]

    def build_audience_messages(self, text):
        """Messages asking the model to react as a lay audience member."""
        return [
            {"role": "system", "content": AUDIENCE_SYSTEM_PROMPT},
            {
                "role": "user",
                "content": f"Here's the topic I'm explaining:\n\n{text}\n\n"
                "As someone unfamiliar with this topic, what questions or suggestions do you have?",
            },
        ]

    def _relay(self, messages):
        try:
            data = self.client.post_json(
                {"model": self.model_name, "messages": messages}, self._headers()
            )
        except UpstreamError as e:
            self.logger.error(f"Upstream error: {e.status} {e.data}")
            body = {"error": "API request failed"}
            if e.status is not None:
                body["status"] = e.status
            body["details"] = e.data if e.data is not None else str(e)
            return body, 502
        return data, 200

    def convert(self, payload):
        """
        Routes an inbound /convert payload to one of the two prompt modes and
        relays it upstream. Returns a (body, status_code) tuple.
        """
        if not isinstance(payload, dict):
            payload = {}
        text = payload.get("text")
        steps = payload.get("steps")

        if text == REORDER_TRIGGER and isinstance(steps, list):
            self.logger.info(f"Received {len(steps)} reordered steps")
            return self._relay(self.build_reorder_messages(steps))

        if not text:
            return {"error": "No text provided"}, 400

        self.logger.info(f"Received text: {text}")
        return self._relay(self.build_audience_messages(text))
