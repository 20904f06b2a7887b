#!/usr/bin/env python3
"""
Compression Monitor Runbook
Creates a session, connects to the band controller, runs cycles for a fixed
duration and prints live readings. With --serve, runs the REST API instead.

Usage:
    python run_monitor.py --port /dev/ttyACM0 --patient P-001 --duration 30
    python run_monitor.py --serve
"""

import argparse
import logging
import os
import sys
import time

from compression_lib import SessionController, protocol
from compression_lib.errors import CompressionMonitorError
from compression_lib.transport import PortRegistry
from data_store import HttpSessionStore, LocalSessionStore


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Compression band monitor runbook")
    parser.add_argument("--port", default=os.getenv("SERIAL_PORT", "/dev/ttyACM0"),
                        help="Serial device path")
    parser.add_argument("--baud", type=int, default=protocol.BAUD_RATE, help="Baud rate")
    parser.add_argument("--patient", default="demo-patient", help="Patient id")
    parser.add_argument("--target-pressure", type=float,
                        default=protocol.DEFAULT_TARGET_PRESSURE_KPA, help="Target pressure (kPa)")
    parser.add_argument("--hold-time", type=int, default=protocol.DEFAULT_HOLD_TIME_S,
                        help="Hold time (s)")
    parser.add_argument("--duration", type=float, default=30.0, help="Run duration (s)")
    parser.add_argument("--backend-url", default=os.getenv("BACKEND_URL", ""),
                        help="Session backend base URL (local store if empty)")
    parser.add_argument("--serve", action="store_true", help="Run the REST API with uvicorn")
    parser.add_argument("--log-level", default=os.getenv("LOG_LEVEL", "INFO"))
    return parser.parse_args(argv)


def serve() -> None:
    import uvicorn

    from api.main import API_HOST, API_PORT

    uvicorn.run("api.main:app", host=API_HOST, port=API_PORT)


def run(args: argparse.Namespace) -> int:
    if args.backend_url:
        store = HttpSessionStore(args.backend_url)
    else:
        store = LocalSessionStore()

    controller = SessionController(store=store, registry=PortRegistry(authorized=[args.port]))

    print("=" * 70)
    print("Compression Monitor Runbook")
    print("=" * 70)
    print(f"Port: {args.port}")
    print(f"Baud: {args.baud}")
    print(f"Patient: {args.patient}")
    print(f"Protocol: {args.target_pressure} kPa, hold {args.hold_time}s")
    print(f"Backend: {args.backend_url or 'local store'}")
    print(f"Duration: {args.duration}s")
    print()

    try:
        # Step 1: Session
        print("[1/4] Creating session...")
        session = controller.create_session(
            patient_id=args.patient,
            target_pressure=args.target_pressure,
            hold_time_seconds=args.hold_time,
        )
        print(f"      Session: {session.id}")
        print()

        # Step 2: Connect
        print("[2/4] Connecting to controller...")
        controller.select_port(args.port)
        controller.connect(baud=args.baud)
        print("      Connected")
        print()

        # Step 3: Run cycles
        print("[3/4] Starting cycles...")
        controller.start()

        start_time = time.time()
        seen = controller.buffer.total_appended
        while time.time() - start_time < args.duration and controller.is_connected():
            time.sleep(0.5)
            readings, seen = controller.buffer.since(seen)
            for reading in readings:
                elapsed = time.time() - start_time
                print(f"      [{elapsed:5.1f}s] pressure={reading.measured_pressure:6.2f} kPa "
                      f"temp={reading.temperature:5.2f} C cycle={reading.cycle_index}")

        if controller.permissions().can_stop:
            controller.stop()

        # Step 4: Results
        print()
        print("[4/4] Done.")
        stats = controller.upload_stats()
        print(f"      Buffered readings: {len(controller.read_buffer_snapshot())}")
        print(f"      Uploads sent: {stats['sent']}, failed: {stats['failed']}")
        if controller.last_error:
            print(f"      Last error: {controller.last_error}")
        return 0

    except CompressionMonitorError as e:
        print(f"✗ FAIL: {e}")
        return 1

    finally:
        controller.shutdown()
        print()
        print("Disconnected.")
        print("=" * 70)


def main(argv=None) -> int:
    args = parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, args.log_level.upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )
    if args.serve:
        serve()
        return 0
    return run(args)


if __name__ == "__main__":
    sys.exit(main())
