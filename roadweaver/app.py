# app.py - Flask host for the road-growth engine
# deps: pip install flask numpy rasterio pillow requests structlog

from __future__ import annotations
from typing import Optional
import io
import logging
import random
import threading

import numpy as np
import structlog
from flask import Flask, request, jsonify, make_response
from PIL import Image

from .config import API_HOST, API_PORT, CostParams, DriverParams, SearchParams
from .driver import DriverState, Simulation
from .engine import Engine
from .errors import ConfigurationError, LoadError
from .loaders import load_region

logger = structlog.get_logger()


# ======= Logging =======
def configure_logging(level: str = "INFO", json_logs: bool = False) -> None:
    logging.basicConfig(format="%(message)s", level=getattr(logging, level.upper(), logging.INFO))
    renderer = structlog.processors.JSONRenderer() if json_logs else structlog.dev.ConsoleRenderer()
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            renderer,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


# ======= Host =======
class SimulationHost:
    """One engine, one driver thread. Control calls are serialised by a lock."""

    def __init__(self, engine: Optional[Engine] = None, driver_params: Optional[DriverParams] = None,
                 seed: Optional[int] = None):
        self.engine = engine or Engine()
        self.driver_params = driver_params or DriverParams()
        self.seed = seed
        self.simulation: Optional[Simulation] = None
        self.lock = threading.Lock()

    @property
    def running(self) -> bool:
        return self.simulation is not None and self.simulation.running

    def _stop(self):
        if self.simulation is not None:
            self.simulation.stop()
            if self.simulation.running:
                raise RuntimeError("Driver is still finishing a search; try again.")
            self.simulation = None

    def load(self, raster_path: str, settlements_source: str, params: Optional[dict] = None):
        # read everything first so a failed load leaves the current region intact
        raster, settlements = load_region(raster_path, settlements_source)
        params = params or {}
        cost_params = CostParams.from_mapping(params)
        search_params = SearchParams.from_mapping(params)
        driver_params = DriverParams.from_mapping(params)
        with self.lock:
            self._stop()
            self.engine.reset()
            self.engine.search_params = search_params
            self.driver_params = driver_params
            self.engine.load(raster.pixels, raster.width, raster.height, settlements,
                             blocked=raster.blocked, cost_params=cost_params)

    def start(self) -> Simulation:
        with self.lock:
            if self.running:
                raise RuntimeError("Simulation already running.")
            rng = random.Random(self.seed)
            simulation = Simulation(self.engine, self.driver_params, rng)
            simulation.start_in_thread()
            self.simulation = simulation
            return simulation

    def shutdown(self):
        with self.lock:
            self._stop()


# ======= App factory =======
def create_app(host: Optional[SimulationHost] = None) -> Flask:
    app = Flask(__name__)
    host = host or SimulationHost()
    app.extensions["roadweaver"] = host

    # ======= CORS =======
    @app.after_request
    def _cors(resp):
        resp.headers["Access-Control-Allow-Origin"] = "*"
        resp.headers["Access-Control-Allow-Headers"] = "*"
        resp.headers["Access-Control-Allow-Methods"] = "GET,POST,OPTIONS"
        return resp

    @app.errorhandler(ConfigurationError)
    def _bad_config(e):
        return jsonify({"error": str(e)}), 400

    @app.errorhandler(LoadError)
    def _load_failed(e):
        return jsonify({"error": str(e)}), 502

    @app.route("/", methods=["GET"])
    def root():
        grid = host.engine.grid
        sim = host.simulation
        return {
            "ok": True,
            "loaded": host.engine.loaded,
            "running": host.running,
            "state": (sim.state if sim else DriverState.IDLE).value,
            "iterations": sim.iterations if sim else 0,
            "grid": None if grid is None else {"width": grid.width, "height": grid.height},
            "settlements": len(host.engine.settlements),
            "pending_events": host.engine.channel.pending(),
        }

    @app.route("/load", methods=["POST"])
    def load():
        data = request.get_json(force=True, silent=True) or {}
        raster_path = data.get("raster")
        settlements_source = data.get("settlements")
        if not raster_path or not settlements_source:
            return jsonify({"error": "raster and settlements are required"}), 400
        try:
            host.load(raster_path, settlements_source, data.get("params"))
        except RuntimeError as e:
            return jsonify({"error": str(e)}), 409
        grid = host.engine.grid
        return jsonify({"ok": True, "width": grid.width, "height": grid.height,
                        "settlements": len(host.engine.settlements)})

    @app.route("/start", methods=["POST"])
    def start():
        try:
            host.start()
        except RuntimeError as e:
            return jsonify({"error": str(e)}), 409
        return jsonify({"ok": True})

    @app.route("/advance", methods=["POST"])
    def advance():
        host.engine.channel.advance()
        return jsonify({"ok": True})

    @app.route("/events", methods=["GET"])
    def events():
        try:
            max_events = int(request.args.get("max", "1000"))
            timeout = float(request.args.get("timeout", "0"))
        except ValueError:
            return jsonify({"error": "max must be an integer and timeout a number"}), 400
        batch = host.engine.channel.drain(max(1, max_events), timeout=min(max(timeout, 0.0), 30.0))
        return jsonify({"events": [ev.to_dict() for ev in batch]})

    @app.route("/settlements", methods=["GET"])
    def settlements():
        return jsonify({"settlements": [s.to_dict() for s in host.engine.settlements]})

    @app.route("/usage.png", methods=["GET"])
    def usage_png():
        grid = host.engine.grid
        if grid is None:
            return jsonify({"error": "no grid loaded"}), 404
        usage = grid.usage.reshape(grid.height, grid.width).astype(np.float64)
        top = max(float(usage.max()), 1.0)
        buf = io.BytesIO()
        Image.fromarray((usage / top * 255).astype("uint8")).save(buf, "PNG")
        buf.seek(0)
        resp = make_response(buf.read())
        resp.headers["Content-Type"] = "image/png"
        return resp

    return app


def main():
    configure_logging()
    app = create_app()
    logger.info("serving", host=API_HOST, port=API_PORT)
    app.run(host=API_HOST, port=API_PORT, threaded=True)


if __name__ == "__main__":
    main()
