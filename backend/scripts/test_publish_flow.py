import json
import sys
import time
from urllib.error import HTTPError
from urllib.request import Request, urlopen

API_BASE_URL = "http://localhost:8000"
TERMINAL_STATUSES = {"completed", "failed"}


def api_request(method: str, path: str, *, token: str | None = None, payload: dict | None = None) -> dict:
    body = json.dumps(payload).encode("utf-8") if payload is not None else None
    headers = {"Content-Type": "application/json"}
    if token:
        headers["Authorization"] = f"Bearer {token}"

    req = Request(f"{API_BASE_URL}{path}", data=body, headers=headers, method=method)
    try:
        with urlopen(req) as response:
            data = response.read().decode("utf-8")
            return json.loads(data) if data else {}
    except HTTPError as exc:
        message = exc.read().decode("utf-8")
        raise RuntimeError(f"{method} {path} failed: {exc.code} {message}") from exc


def main() -> int:
    global API_BASE_URL
    if len(sys.argv) < 2:
        print("usage: test_publish_flow.py <access_token> [api_base_url] [platform]")
        return 2
    token = sys.argv[1]
    if len(sys.argv) > 2:
        API_BASE_URL = sys.argv[2].rstrip("/")
    platform = sys.argv[3] if len(sys.argv) > 3 else "x"

    created = api_request(
        "POST",
        "/publications/jobs",
        token=token,
        payload={"platform": platform, "content": {"caption": f"Pipeline smoke test {int(time.time())}"}},
    )
    job_id = created["job_id"]
    print(f"[1] Enqueued {platform} job: {job_id}")

    deadline = time.time() + 120
    job = None
    while time.time() < deadline:
        job = api_request("GET", f"/publications/jobs/{job_id}", token=token)
        if job["status"] in TERMINAL_STATUSES:
            break
        time.sleep(3)

    if not job or job["status"] not in TERMINAL_STATUSES:
        raise RuntimeError("Job did not reach a terminal status within timeout")

    print(f"[2] Job finished: status={job['status']} attempts={job['retry_count']}")
    if job["status"] == "failed":
        print(f"    error_code={job['error_code']} retryable={job['is_retryable']} error={job['error_message']}")
    else:
        print(f"    platform_response={json.dumps(job['platform_response'])}")

    metrics = api_request("GET", "/publications/metrics", token=token)
    print(f"[3] Queue metrics: {json.dumps(metrics)}")
    print("Flow completed.")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
