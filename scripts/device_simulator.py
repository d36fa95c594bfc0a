#!/usr/bin/env python3
"""
Device Simulator

Polls the task controller like an MAA client and reports every task back,
for manual end-to-end checks of the bot without a real device.

Automation tasks (LinkStart-*) and their companion CaptureImage run one at
a time on a background worker, like the real client's task chain.
HeartBeat and CaptureImageNow are answered as soon as they are polled, so
a heartbeat can name the automation task that is still running.

- CaptureImage / CaptureImageNow: reports the --image file (base64)
- HeartBeat: reports the id of the automation task currently running
- Everything else: reports SUCCESS after --work-seconds

Usage:
    python scripts/device_simulator.py --device emulator-5554 --user 1 --image shot.png
"""

import argparse
import asyncio
import base64
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

import httpx

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger("device_simulator")

HTTP_TIMEOUT = 10.0
CAPTURE_KINDS = frozenset(["CaptureImage", "CaptureImageNow"])
# Answered immediately instead of waiting behind the worker queue
IMMEDIATE_KINDS = frozenset(["HeartBeat", "CaptureImageNow"])


class DeviceSimulator:
    def __init__(
        self,
        base_url: str,
        device_id: str,
        user_id: str,
        image: Optional[bytes] = None,
        work_seconds: float = 1.0,
    ):
        self.base_url = base_url.rstrip("/")
        self.device_id = device_id
        self.user_id = user_id
        self.image = image or b""
        self.work_seconds = work_seconds
        self.running_task_id: Optional[str] = None

    async def poll(self, client: httpx.AsyncClient) -> List[Dict[str, Any]]:
        response = await client.post(
            f"{self.base_url}/get",
            json={"user": self.user_id, "device": self.device_id},
        )
        response.raise_for_status()
        return response.json().get("tasks", [])

    async def report(
        self,
        client: httpx.AsyncClient,
        task_id: str,
        status: str,
        payload: str = "",
    ) -> None:
        response = await client.post(
            f"{self.base_url}/report",
            json={
                "user": self.user_id,
                "device": self.device_id,
                "task": task_id,
                "status": status,
                "payload": payload,
            },
        )
        if response.status_code != 200:
            logger.warning(f"Report for {task_id} rejected: {response.status_code} {response.text}")

    async def execute(self, client: httpx.AsyncClient, task: Dict[str, Any]) -> None:
        task_id, kind = task["id"], task["type"]
        logger.info(f"Executing {kind} ({task_id})")

        if kind in CAPTURE_KINDS:
            await self.report(client, task_id, "SUCCESS", base64.b64encode(self.image).decode())
        elif kind == "HeartBeat":
            await self.report(client, task_id, "SUCCESS", self.running_task_id or "")
        else:
            self.running_task_id = task_id
            try:
                await asyncio.sleep(self.work_seconds)
            finally:
                self.running_task_id = None
            await self.report(client, task_id, "SUCCESS")

    async def worker(self, client: httpx.AsyncClient, queue: "asyncio.Queue[Dict[str, Any]]") -> None:
        while True:
            task = await queue.get()
            try:
                await self.execute(client, task)
            except httpx.HTTPError as e:
                logger.warning(f"Report for {task['id']} failed: {e}")
            finally:
                queue.task_done()

    async def run(
        self,
        interval: float,
        once: bool = False,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        queue: "asyncio.Queue[Dict[str, Any]]" = asyncio.Queue()
        async with httpx.AsyncClient(timeout=HTTP_TIMEOUT, transport=transport) as client:
            worker = asyncio.create_task(self.worker(client, queue))
            try:
                while True:
                    try:
                        for task in await self.poll(client):
                            if task["type"] in IMMEDIATE_KINDS:
                                await self.execute(client, task)
                            else:
                                queue.put_nowait(task)
                    except httpx.HTTPError as e:
                        logger.warning(f"Controller unreachable: {e}")
                    if once:
                        await queue.join()
                        return
                    await asyncio.sleep(interval)
            finally:
                worker.cancel()


def main():
    parser = argparse.ArgumentParser(description="Simulated MAA remote control client")
    parser.add_argument("--url", default="http://127.0.0.1:8080")
    parser.add_argument("--device", required=True)
    parser.add_argument("--user", required=True)
    parser.add_argument("--image", type=Path, help="Screenshot file to report for capture tasks")
    parser.add_argument("--interval", type=float, default=3.0)
    parser.add_argument("--work-seconds", type=float, default=1.0)
    parser.add_argument("--once", action="store_true", help="Poll a single time and exit")
    args = parser.parse_args()

    image = args.image.read_bytes() if args.image else None
    simulator = DeviceSimulator(args.url, args.device, args.user, image, args.work_seconds)
    try:
        asyncio.run(simulator.run(args.interval, once=args.once))
    except KeyboardInterrupt:
        logger.info("Stopped")


if __name__ == "__main__":
    main()
