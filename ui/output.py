"""
Output formatting -- JSON and plain text.
"""
from __future__ import annotations

from typing import Any, Dict, List, Optional

from engine.config import TestConfig
from engine.models import ServerEndpoint, TestResult


def create_result_json(
    result: TestResult,
    endpoint: ServerEndpoint,
    config: Optional[TestConfig] = None,
    download_history: Optional[List[float]] = None,
    upload_history: Optional[List[float]] = None,
) -> Dict[str, Any]:
    """Build a JSON-serialisable dict describing one completed run."""
    data = result.to_dict()
    data["server"] = endpoint.to_dict()
    if config is not None:
        data["config"] = config.to_dict()
    if download_history:
        data["download"]["history"] = [round(v, 2) for v in download_history]
    if upload_history:
        data["upload"]["history"] = [round(v, 2) for v in upload_history]
    return data


def format_text_result(result: TestResult, server_name: str) -> str:
    sep = "=" * 50
    mid = "-" * 50
    return (
        f"{sep}\n"
        f"Speed Test Results\n"
        f"{sep}\n"
        f"Server: {server_name}\n"
        f"{mid}\n"
        f"Ping: {result.latency_ms} ms (jitter: {result.jitter_ms} ms)\n"
        f"Download: {result.download_mbps:.2f} Mbps\n"
        f"Upload: {result.upload_mbps:.2f} Mbps\n"
        f"{sep}"
    )
