"""Local JSON API for TimeTrack.

A lightweight Flask app exposing the running tracker:
- Status and tracking control
- Tracker settings
- Category and rule management, manual category overrides
- Productivity statistics
"""

import logging
import threading
from dataclasses import asdict
from datetime import date, datetime, timedelta
from typing import Any, Optional

from flask import Flask, jsonify, request

from timetrack.core.models import Activity, OperationResult
from timetrack.core.rules import (
    category_from_dict,
    category_to_dict,
    rule_from_dict,
    rule_to_dict,
)

logger = logging.getLogger(__name__)

# Will be set by start_dashboard()
_app_ref = None  # type: Optional[Any]  # TimeTrackApp


def create_flask_app() -> Flask:
    app = Flask(__name__)

    @app.route("/api/status")
    def api_status():
        if _app_ref is None:
            return jsonify({"error": "not initialized"}), 503
        tracker = _app_ref.tracker
        current = tracker.get_current_activity() if tracker is not None else None
        stats = tracker.get_stats() if tracker is not None else None
        return jsonify({
            "state": _app_ref.state.value,
            "current": activity_to_dict(current) if current is not None else None,
            "stats": _tracker_stats_to_dict(stats) if stats is not None else None,
        })

    @app.route("/api/tracking/<action>", methods=["POST"])
    def api_tracking(action):
        if _app_ref is None:
            return jsonify({"error": "not initialized"}), 503
        handlers = {
            "start": _app_ref.start_tracking,
            "pause": _app_ref.pause_tracking,
            "resume": _app_ref.resume_tracking,
            "stop": _app_ref.stop_tracking,
        }
        handler = handlers.get(action)
        if handler is None:
            return jsonify({"error": f"unknown action: {action}"}), 404
        handler()
        return jsonify({"state": _app_ref.state.value})

    @app.route("/api/settings")
    def api_get_settings():
        if _app_ref is None or _app_ref.tracker is None:
            return jsonify({"error": "not ready"}), 503
        return jsonify(asdict(_app_ref.tracker.settings))

    @app.route("/api/settings", methods=["POST"])
    def api_update_settings():
        if _app_ref is None:
            return jsonify({"error": "not ready"}), 503
        data = request.get_json(silent=True)
        if not isinstance(data, dict):
            return jsonify({"error": "expected a JSON object"}), 400
        result = _app_ref.update_settings(data)
        if not result:
            return _failure(result)
        return jsonify(asdict(_app_ref.tracker.settings))

    # -- categories ------------------------------------------------------

    @app.route("/api/categories")
    def api_categories():
        if _app_ref is None:
            return jsonify([])
        return jsonify([category_to_dict(c) for c in _app_ref.rule_engine.get_categories()])

    @app.route("/api/categories", methods=["POST"])
    def api_upsert_category():
        if _app_ref is None:
            return jsonify({"error": "not ready"}), 503
        data = request.get_json(silent=True) or {}
        try:
            category = category_from_dict(data)
        except (KeyError, TypeError, ValueError) as exc:
            return jsonify({"error": f"invalid category: {exc}"}), 400
        result = _app_ref.upsert_category(category)
        if not result:
            return _failure(result)
        return jsonify(category_to_dict(_app_ref.rule_engine.get_category(category.id)))

    @app.route("/api/categories/<category_id>", methods=["DELETE"])
    def api_delete_category(category_id):
        if _app_ref is None:
            return jsonify({"error": "not ready"}), 503
        result = _app_ref.delete_category(category_id)
        if not result:
            return _failure(result)
        return jsonify({"ok": True})

    # -- rules -----------------------------------------------------------

    @app.route("/api/rules")
    def api_rules():
        if _app_ref is None:
            return jsonify([])
        category_id = request.args.get("category")
        engine = _app_ref.rule_engine
        rules = engine.get_rules_for_category(category_id) if category_id else engine.get_rules()
        return jsonify([rule_to_dict(r) for r in rules])

    @app.route("/api/rules", methods=["POST"])
    def api_upsert_rule():
        if _app_ref is None:
            return jsonify({"error": "not ready"}), 503
        data = request.get_json(silent=True) or {}
        try:
            rule = rule_from_dict(data)
        except (KeyError, TypeError, ValueError) as exc:
            return jsonify({"error": f"invalid rule: {exc}"}), 400
        result = _app_ref.upsert_rule(rule)
        if not result:
            return _failure(result)
        return jsonify(rule_to_dict(rule))

    @app.route("/api/rules/<rule_id>", methods=["DELETE"])
    def api_delete_rule(rule_id):
        if _app_ref is None:
            return jsonify({"error": "not ready"}), 503
        result = _app_ref.delete_rule(rule_id)
        if not result:
            return _failure(result)
        return jsonify({"ok": True})

    @app.route("/api/rules/<rule_id>/toggle", methods=["POST"])
    def api_toggle_rule(rule_id):
        if _app_ref is None:
            return jsonify({"error": "not ready"}), 503
        result = _app_ref.toggle_rule(rule_id)
        if not result:
            return _failure(result)
        return jsonify(rule_to_dict(_app_ref.rule_engine.get_rule(rule_id)))

    # -- activities and stats -------------------------------------------

    @app.route("/api/activities/<activity_id>/category", methods=["POST"])
    def api_categorize_activity(activity_id):
        if _app_ref is None:
            return jsonify({"error": "not ready"}), 503
        data = request.get_json(silent=True) or {}
        category_id = (data.get("categoryId") or "").strip()
        if not category_id:
            return jsonify({"error": "categoryId required"}), 400
        result = _app_ref.manual_categorize(activity_id, category_id)
        if not result:
            return _failure(result)
        return jsonify({"ok": True})

    @app.route("/api/stats/productivity")
    def api_productivity():
        if _app_ref is None:
            return jsonify({"error": "not ready"}), 503
        try:
            start = _parse_day(request.args.get("start"))
            end = _parse_day(request.args.get("end"))
        except ValueError:
            return jsonify({"error": "start and end must be ISO dates"}), 400
        if start is None:
            start = datetime.combine(date.today(), datetime.min.time())
        # ``end`` names the last day included.
        end = (end or start) + timedelta(days=1)
        stats = _app_ref.productivity_stats(start, end)
        return jsonify(asdict(stats))

    return app


def start_dashboard(app_ref, port: int = 5555) -> threading.Thread:
    """Start the Flask API in a daemon thread."""
    global _app_ref
    _app_ref = app_ref
    flask_app = create_flask_app()

    def _run():
        flask_app.run(host="127.0.0.1", port=port, debug=False, use_reloader=False)

    t = threading.Thread(target=_run, daemon=True, name="timetrack-web")
    t.start()
    logger.info("API started at http://127.0.0.1:%d", port)
    return t


def activity_to_dict(activity: Activity) -> dict[str, Any]:
    return {
        "id": activity.id,
        "applicationName": activity.application_name,
        "windowTitle": activity.window_title,
        "processPath": activity.process_path,
        "startTime": activity.start_time.isoformat(),
        "endTime": activity.end_time.isoformat(),
        "duration": activity.duration,
        "categoryId": activity.category_id,
        "categoryAutoAssigned": activity.category_auto_assigned,
        "categoryConfidence": activity.category_confidence,
        "isCoded": activity.is_coded,
        "isIdle": activity.is_idle,
        "source": activity.source,
    }


def _tracker_stats_to_dict(stats) -> dict[str, Any]:
    data = asdict(stats)
    data["productivity_score"] = stats.productivity_score
    return data


def _failure(result: OperationResult):
    return jsonify({"error": result.error}), 400


def _parse_day(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    return datetime.combine(date.fromisoformat(value), datetime.min.time())
