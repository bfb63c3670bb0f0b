# Copyright (c) 2025 Trae AI. All rights reserved.

import asyncio
import logging
import sys
import threading
from flask import Flask, jsonify, request
from flask_apscheduler import APScheduler
from pydantic import ValidationError
from ..core.config import Config
from ..core.exceptions import CloudShelfError
from ..core.models import LibraryType, MetadataPatch, MetadataSource
from ..core import projections
from ..services.container import Services


class Server:
    def __init__(self, config_path: str = "config.yaml", **service_overrides):
        logging.basicConfig(
            level=logging.INFO,
            format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
            handlers=[logging.StreamHandler(sys.stdout)]
        )
        self.logger = logging.getLogger("cloudshelf.server.app")

        self.config = Config.load(config_path)
        if self.config.verbose:
            logging.getLogger().setLevel(logging.DEBUG)

        self.app = Flask(__name__)
        self.scheduler = APScheduler()
        self.services = Services(self.config, **service_overrides)
        self._scan_thread = None

        self._setup_routes()
        self._setup_scheduler()

    # Background scans

    def start_scan(self, library_id: str = None) -> bool:
        """
        Runs a scan on a worker thread. Returns False if one is already running.
        """
        if self.services.tracker.is_scanning:
            return False
        if self._scan_thread and self._scan_thread.is_alive():
            return False

        library = self.services.libraries.get(library_id) if library_id else None

        def run_scan():
            try:
                if library:
                    asyncio.run(self.services.scan.scan_library(library))
                else:
                    asyncio.run(self.services.scan.scan_all())
            except CloudShelfError as e:
                self.logger.error(f"Background scan failed: {e.message}")

        self._scan_thread = threading.Thread(target=run_scan, daemon=True)
        self._scan_thread.start()
        return True

    def _scheduled_scan(self):
        if not self.start_scan():
            self.logger.info("Skipping scheduled scan; a scan is already running.")

    def _setup_routes(self):
        app = self.app
        services = self.services

        @app.errorhandler(CloudShelfError)
        def handle_error(e: CloudShelfError):
            return jsonify({"error": e.message}), e.status_code

        @app.route("/api/libraries", methods=["GET"])
        def list_libraries():
            return jsonify([
                {**lib.model_dump(mode="json"), "item_count": services.store.media.count_by_library(lib.id)}
                for lib in services.libraries.list()
            ])

        @app.route("/api/libraries", methods=["POST"])
        def create_library():
            data = request.json or {}
            name = data.get("name")
            if not name or not data.get("type"):
                return jsonify({"error": "name and type are required"}), 400
            try:
                library_type = LibraryType(data["type"])
            except ValueError:
                return jsonify({"error": f"Unknown library type: {data['type']}"}), 400
            library = services.libraries.create(name, library_type, data.get("root_paths") or [])
            self.logger.info(f"[User Action] Created library {name}")
            return jsonify(library.model_dump(mode="json")), 201

        @app.route("/api/libraries/<library_id>", methods=["PATCH"])
        def update_library(library_id):
            data = request.json or {}
            library_type = None
            if data.get("type"):
                try:
                    library_type = LibraryType(data["type"])
                except ValueError:
                    return jsonify({"error": f"Unknown library type: {data['type']}"}), 400
            library = services.libraries.update(
                library_id, name=data.get("name"), type=library_type, root_paths=data.get("root_paths")
            )
            return jsonify(library.model_dump(mode="json"))

        @app.route("/api/libraries/<library_id>", methods=["DELETE"])
        def delete_library(library_id):
            removed = services.libraries.remove(library_id)
            self.logger.info(f"[User Action] Removed library {library_id}")
            return jsonify({"status": "success", "removed_items": removed})

        @app.route("/api/media")
        def get_media():
            items = services.store.media.get_all()
            library_id = request.args.get("library_id")
            if library_id:
                items = projections.select_items_by_library(items, library_id)
            if request.args.get("recent"):
                items = projections.select_recently_added(items, self.config.recently_added_limit)
            return jsonify([item.model_dump(mode="json") for item in items])

        @app.route("/api/media/<item_id>")
        def get_item(item_id):
            return jsonify(services.match.get_item(item_id).model_dump(mode="json"))

        @app.route("/api/shows")
        def get_shows():
            shows = projections.select_tv_shows(services.store.media.get_all())
            return jsonify([show.model_dump(mode="json") for show in shows])

        @app.route("/api/music")
        def get_music():
            artists = projections.select_music_artists(services.store.media.get_all())
            return jsonify([artist.model_dump(mode="json") for artist in artists])

        @app.route("/api/continue")
        def get_in_progress():
            entries = projections.select_in_progress(
                services.store.media.get_all(),
                services.store.progress.get_all(),
                min_watched=self.config.min_watched_seconds,
                limit=self.config.in_progress_limit,
            )
            return jsonify([entry.model_dump(mode="json") for entry in entries])

        @app.route("/api/scan", methods=["POST"])
        def trigger_scan():
            data = request.get_json(silent=True) or {}
            if not self.start_scan(data.get("library_id")):
                return jsonify({"error": "Scan already in progress"}), 409
            self.logger.info("[User Action] Scan triggered")
            return jsonify({"status": "started"}), 202

        @app.route("/api/status")
        def get_status():
            state = services.tracker.state.model_dump(mode="json")
            state["degraded_providers"] = [
                source.value for source in MetadataSource if services.metadata.is_degraded(source)
            ]
            return jsonify(state)

        @app.route("/api/search", methods=["GET"])
        def manual_search():
            item_id = request.args.get("item_id")
            if not item_id:
                return jsonify({"error": "item_id is required"}), 400
            query = request.args.get("query")
            self.logger.info(f"[User Action] Manual search request: item='{item_id}', query='{query}'")
            candidates = asyncio.run(services.match.find_candidates(item_id, query))
            return jsonify([c.model_dump(mode="json") for c in candidates])

        @app.route("/api/confirm", methods=["POST"])
        def confirm_selection():
            data = request.json or {}
            item_id = data.get("item_id")
            selection = data.get("selection")
            if not item_id or not selection:
                return jsonify({"error": "item_id and selection are required"}), 400
            try:
                candidate = MetadataPatch.model_validate(selection)
            except ValidationError as e:
                return jsonify({"error": f"Invalid selection: {e}"}), 400
            item = services.match.apply_match(item_id, candidate)
            self.logger.info(f"[User Action] Manually matched {item.remote_path}")
            return jsonify(item.model_dump(mode="json"))

        @app.route("/api/progress/<item_id>", methods=["GET"])
        def get_progress(item_id):
            progress = services.store.progress.get(item_id)
            return jsonify({
                "progress": progress.model_dump(mode="json") if progress else None,
                "resume_at": services.playback.resume_position(item_id),
            })

        @app.route("/api/progress/<item_id>", methods=["POST"])
        def report_progress(item_id):
            data = request.json or {}
            if data.get("completed"):
                progress = services.playback.mark_completed(item_id)
                return jsonify({"written": True, "progress": progress.model_dump(mode="json")})
            try:
                position = float(data["position"])
                duration = float(data.get("duration") or 0.0)
            except (KeyError, TypeError, ValueError):
                return jsonify({"error": "position must be a number"}), 400
            written = services.playback.report(item_id, position, duration, data.get("cfi"))
            if data.get("flush"):
                services.playback.flush(item_id)
                written = True
            return jsonify({"written": written})

        @app.route("/api/progress/<item_id>", methods=["DELETE"])
        def clear_progress(item_id):
            services.playback.clear(item_id)
            return jsonify({"status": "success"})

        @app.route("/api/logs")
        def get_logs():
            return jsonify(services.store.logs.get_recent(limit=100))

        @app.route("/api/export")
        def export_catalog():
            return jsonify(services.store.export_snapshot())

        @app.route("/api/import", methods=["POST"])
        def import_catalog():
            try:
                counts = services.store.import_snapshot(request.json or {})
            except ValueError as e:
                return jsonify({"error": str(e)}), 400
            self.logger.info(f"[User Action] Imported catalog: {counts}")
            return jsonify(counts)

    def _setup_scheduler(self):
        self.scheduler.init_app(self.app)
        if self.config.scan_interval_minutes > 0:
            self.scheduler.add_job(
                id="periodic_scan",
                func=self._scheduled_scan,
                trigger="interval",
                minutes=self.config.scan_interval_minutes,
            )
        self.scheduler.start()

    def run(self):
        try:
            self.app.run(host=self.config.server_host, port=self.config.server_port)
        finally:
            self.services.playback.flush_all()


if __name__ == "__main__":
    server = Server()
    server.run()
