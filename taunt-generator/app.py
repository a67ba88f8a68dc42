import os
from flask import Flask, request, jsonify

# IMPORTANT: the core lives in taunt_generator.py at the repo root;
# this file only maps HTTP onto a TauntSession.
from taunt_generator import (
    MODES,
    TOKEN_PARAM,
    LexiconNotReady,
    Settings,
    build_session,
)

app = Flask(__name__)
session = build_session(Settings.from_env())


def state_view():
    comp = session.composition
    state = session.state
    return {
        "mode": state.mode,
        "line1": state.line1.as_dict(),
        "line2": state.line2.as_dict(),
        "text": comp.text,
        "lines": list(comp.lines),
        "rating": comp.rating,
        "token": session.token,
        "share_url": session.get_share_url(),
    }


def item_view(item):
    return {
        "id": item.id,
        "text": item.text,
        "mode": item.state.mode,
        "timestamp": item.timestamp,
        "share_url": session.get_share_url(item),
    }


def bad_request(message):
    return jsonify({"error": message}), 400


@app.errorhandler(LexiconNotReady)
def not_ready(exc):
    app.logger.warning("request before lexicon was loaded: %s", exc)
    return jsonify({"error": str(exc)}), 503


# Share links land here: /?s=<token>
@app.get("/")
def home():
    if TOKEN_PARAM in request.args and not session.load_from_url(request.url):
        app.logger.info("share link did not decode, kept saved state")
    return jsonify(state_view())


@app.get("/health")
def health():
    return {"ok": True, "ready": session.ready}


@app.get("/lexicon")
def lexicon():
    return jsonify(session.lexicon.to_dict())


@app.get("/state")
def get_state():
    return jsonify(state_view())


@app.post("/state")
def update_state():
    data = request.get_json(silent=True) or {}
    if not isinstance(data, dict):
        return bad_request("Expected a JSON object")

    state = session.state
    try:
        if "mode" in data:
            state = state.with_mode(data["mode"])
        for line, name in ((1, "line1"), (2, "line2")):
            slots = data.get(name) or {}
            if not isinstance(slots, dict):
                return bad_request(f"{name} must be an object")
            for key, value in slots.items():
                state = state.with_slot(line, key, value)
    except (KeyError, ValueError) as exc:
        return bad_request(exc.args[0] if exc.args else "Invalid state")

    session.set_state(state)
    return jsonify(state_view())


@app.post("/randomize")
def randomize():
    data = request.get_json(silent=True) or {}
    mode = data.get("mode") if isinstance(data, dict) else None
    if mode is not None and mode not in MODES:
        return bad_request(f"Unknown mode: {mode}")
    session.randomize(mode)
    return jsonify(state_view())


@app.post("/generate")
def generate():
    item = session.generate()
    app.logger.info("generated %s", item.id)
    return jsonify({"item": item_view(item), "state": state_view()}), 201


@app.get("/history")
def history():
    return jsonify({"items": [item_view(item) for item in session.history]})


@app.delete("/history/<item_id>")
def delete_history_item(item_id):
    session.delete_history_item(item_id)
    return "", 204


@app.post("/history/<item_id>/load")
def load_history_item(item_id):
    try:
        session.load_from_history(item_id)
    except KeyError:
        return jsonify({"error": "No such history item"}), 404
    return jsonify(state_view())


@app.get("/history/<item_id>/share")
def share_history_item(item_id):
    item = session.find_history_item(item_id)
    if item is None:
        return jsonify({"error": "No such history item"}), 404
    return jsonify({"id": item.id, "share_url": session.get_share_url(item)})


if __name__ == "__main__":
    port = int(os.environ.get("PORT", "8000"))
    app.run(host="0.0.0.0", port=port, debug=os.environ.get("FLASK_DEBUG") == "1")
