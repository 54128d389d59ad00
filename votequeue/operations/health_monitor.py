# votequeue/operations/health_monitor.py
# Liveness/Readiness health checks for the intake (queue reachability)

from typing import Dict

from flask import Blueprint, current_app, jsonify

from votequeue.errors import QueueUnavailable

bp = Blueprint('health', __name__)


def check_queue(vote_queue) -> Dict:
    try:
        vote_queue.ping()
        return {"ok": True, "detail": "redis ok", "address": vote_queue.address}
    except QueueUnavailable as e:
        return {"ok": False, "error": str(e), "address": vote_queue.address}


def check_health(vote_queue) -> Dict:
    """Aggregate readiness of the intake's dependencies."""
    queue = check_queue(vote_queue)
    return {"queue": queue, "overall_ok": queue["ok"]}


@bp.get("/health")
def liveness():
    return jsonify({"ok": True, "hostname": current_app.config.get("HOSTNAME")}), 200


@bp.get("/ready")
def readiness():
    res = check_health(current_app.extensions['vote_intake'].vote_queue)
    code = 200 if res["overall_ok"] else 503
    return jsonify(res), code
