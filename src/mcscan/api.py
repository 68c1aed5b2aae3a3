import logging

from flask import Flask, jsonify, request

from mcscan.config import ScanConfig
from mcscan.exceptions import StoreError, ValidationError
from mcscan.jobs import ScanJobManager
from mcscan.store import open_store

logger = logging.getLogger(__name__)

MAX_LIST_LIMIT = 100
EXAMPLE_SCAN_BODY = {"startIp": "5.9.0.0", "endIp": "5.9.255.255", "batchSize": 100}


def _scan_params():
    body = request.get_json(silent=True)
    if not isinstance(body, dict):
        body = request.form
    return body.get("startIp"), body.get("endIp"), body.get("batchSize")


def create_app(config=None, store_factory=None, jobs=None):
    """
    Read-only view of the stored servers plus the range scan trigger.

    Each read request opens its own store (and Elasticsearch client);
    scans run on the job manager's background loop.
    """
    config = config or ScanConfig.from_env()
    store_factory = store_factory or open_store
    jobs = jobs or ScanJobManager(config, store_factory)

    app = Flask(__name__)
    app.config["SCAN_CONFIG"] = config
    app.extensions["scan_jobs"] = jobs

    @app.errorhandler(ValidationError)
    def validation_failed(e):
        return jsonify(e.to_dict()), e.status_code

    @app.route("/")
    def home():
        return "Minecraft Server Scanner API is running. Use /api/servers to access the data."

    @app.route("/api/servers", methods=["GET"])
    async def list_servers():
        limit = request.args.get("limit", default=MAX_LIST_LIMIT, type=int)
        limit = max(1, min(limit, MAX_LIST_LIMIT))
        try:
            async with store_factory(config) as store:
                servers = await store.find_online(limit)
        except StoreError as e:
            logger.error("Error fetching server data: %s", e)
            return jsonify({"message": "Error fetching server data"}), 500
        return jsonify(servers)

    @app.route("/api/servers/<ip>", methods=["GET"])
    async def get_server(ip):
        try:
            async with store_factory(config) as store:
                server = await store.get_by_ip(ip)
        except StoreError as e:
            logger.error("Error fetching server details: %s", e)
            return jsonify({"message": "Error fetching server details"}), 500
        if server is None:
            return jsonify({"message": "Server not found"}), 404
        return jsonify(server)

    @app.route("/api/servers/scan/range", methods=["POST"])
    def start_scan():
        start_ip, end_ip, batch_size = _scan_params()
        if not start_ip or not end_ip:
            return jsonify({
                "message": "Error: startIp and endIp must be provided in the request body.",
                "example": EXAMPLE_SCAN_BODY,
            }), 400
        if batch_size in (None, ""):
            batch_size = config.default_batch_size
        try:
            batch_size = int(batch_size)
        except (TypeError, ValueError):
            return jsonify({"message": "batchSize must be an integer."}), 400
        if batch_size > config.max_batch_size:
            return jsonify({
                "message": f"Batch size is limited to a maximum of {config.max_batch_size} to prevent system overload."
            }), 400

        job = jobs.submit(start_ip, end_ip, batch_size)
        return jsonify({
            "message": (
                f"Controlled batch scan (Batch Size: {batch_size}) from {start_ip} to {end_ip} "
                f"started in the background. See console & {config.log_path} for results."
            ),
            "job": job.to_dict(),
        }), 202

    @app.route("/api/servers/scan", methods=["GET"])
    def list_scans():
        return jsonify([job.to_dict() for job in jobs.list_jobs()])

    @app.route("/api/servers/scan/<job_id>", methods=["GET"])
    def scan_status(job_id):
        job = jobs.get(job_id)
        if job is None:
            return jsonify({"message": "Scan job not found"}), 404
        return jsonify(job.to_dict())

    @app.route("/api/servers/scan/<job_id>", methods=["DELETE"])
    def cancel_scan(job_id):
        job = jobs.get(job_id)
        if job is None:
            return jsonify({"message": "Scan job not found"}), 404
        cancelled = jobs.cancel(job_id)
        return jsonify({"cancelled": cancelled, "job": job.to_dict()}), 202 if cancelled else 409

    return app
