import threading
import time
import csv
import os
import requests
import subprocess

METRICS_HEADER = ["timestamp", "instance_id", "status_code", "latency_ms", "cache_status", "uuid", "error"]


def parse_uuid_body(body: dict) -> tuple[str, str]:
    """Pull (instance_id, uuid) out of any of the service's JSON shapes."""
    instance_id = str(body.get("instanceId", ""))
    value = body.get("uuid")
    if value is None:
        # "id <token> : uuid <uuid>"
        value = body.get("message", "").rsplit(" ", 1)[-1]
    return instance_id, value


class FrontDoorLoadAgent:
    def __init__(
        self,
        front_door: str,
        run_id: str,
        endpoint: str = "/api/v1/uuid/get",
        rps: float = 0.0,
        timeout_sec: float = 60.0,
    ):
        """
        front_door: base URL of the balancer, e.g. http://localhost:9090
        run_id: used for output directory
        endpoint: path hit on every request
        rps: initial requests per second
        """
        self.front_door = front_door.rstrip("/")
        self.endpoint = endpoint
        self.rps = rps
        self.timeout_sec = timeout_sec
        self.session = requests.Session()
        self._stop_flag = threading.Event()

        self.run_dir = os.path.join("runs", run_id)
        os.makedirs(self.run_dir, exist_ok=True)
        self.metrics_path = os.path.join(self.run_dir, "metrics.csv")

        self._thread = threading.Thread(target=self._run_loop, daemon=True)

        if not os.path.exists(self.metrics_path):
            with open(self.metrics_path, "w", newline="") as f:
                writer = csv.writer(f)
                writer.writerow(METRICS_HEADER)

    def start_load(self, rps: float, endpoint: str | None = None):
        """Start load generation at given RPS."""
        self.rps = rps
        if endpoint:
            self.endpoint = endpoint
        if not self._thread.is_alive():
            self._stop_flag.clear()
            self._thread = threading.Thread(target=self._run_loop, daemon=True)
            self._thread.start()

    def update_rps(self, rps: float, endpoint: str | None = None):
        """Change RPS (and optionally the endpoint) without restarting the thread."""
        self.rps = rps
        if endpoint:
            self.endpoint = endpoint

    def stop(self):
        """Stop load generation and wait for thread to finish."""
        self._stop_flag.set()
        if self._thread.is_alive():
            self._thread.join()

    def send_one(self) -> list:
        """Issue a single request through the front door and return its metrics row."""
        url = f"{self.front_door}{self.endpoint}"
        start = time.time()
        error = ""
        status_code = None
        instance_id = ""
        cache_status = ""
        value = ""

        try:
            resp = self.session.get(url, timeout=self.timeout_sec)
            status_code = resp.status_code
            cache_status = resp.headers.get("X-Cache-Status", "")
            if resp.status_code == 200:
                instance_id, value = parse_uuid_body(resp.json())
            else:
                error = f"HTTP {resp.status_code}"
        except (requests.RequestException, ValueError) as e:
            error = str(e)

        latency_ms = (time.time() - start) * 1000.0
        return [start, instance_id, status_code, latency_ms, cache_status, value, error]

    def _run_loop(self):
        """
        Simple RPS control:
        - 1 / rps seconds between attempts
        - each iteration sends 1 request to the front door
        """
        while not self._stop_flag.is_set():
            if self.rps <= 0:
                time.sleep(0.1)
                continue

            interval = 1.0 / self.rps
            row = self.send_one()

            with open(self.metrics_path, "a", newline="") as f:
                writer = csv.writer(f)
                writer.writerow(row)

            elapsed = time.time() - row[0]
            time.sleep(max(0.0, interval - elapsed))


class ControlAgent:
    """
    Stops and starts replicas via `docker compose` CLI.
    Assumes it's run from the project root where docker-compose.yml lives.
    """

    def stop_container(self, service_name: str):
        print(f"[ControlAgent] Stopping replica: {service_name}")
        subprocess.run(["docker", "compose", "stop", service_name], check=False)

    def start_container(self, service_name: str):
        print(f"[ControlAgent] Starting replica: {service_name}")
        subprocess.run(["docker", "compose", "start", service_name], check=False)
