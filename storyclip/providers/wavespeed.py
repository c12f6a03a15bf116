import asyncio
import time
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import requests

from storyclip.core.models import GenerationRequest, Modality, ModelDescriptor

# WaveSpeed catalog "type" -> task tags used by the clip-type table.
CATALOG_TASKS = {
    "text-to-video": {"t2v"},
    "image-to-video": {"i2v", "multi"},
    "video-extend": {"extend"},
    "first-last-frame-to-video": {"keyframe", "i2v"},
    "text-to-image": {"t2i"},
    "image-to-image": {"i2i"},
}


@dataclass
class ModelCache:
    data: list[dict]
    ts: float


class WaveSpeedProvider:
    def __init__(
        self,
        api_key: str,
        base_url: str = "https://api.wavespeed.ai/api/v3",
        cache_ttl_sec: int = 180,
        request_timeout_sec: float = 30,
    ):
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.cache_ttl_sec = cache_ttl_sec
        self.request_timeout_sec = request_timeout_sec
        self._models: Optional[ModelCache] = None

    def _headers(self, json_body: bool = False) -> Dict[str, str]:
        headers = {"Authorization": f"Bearer {self.api_key}"}
        if json_body:
            headers["Content-Type"] = "application/json"
        return headers

    def list_models(self) -> list[dict]:
        if self._models and (time.time() - self._models.ts) < self.cache_ttl_sec:
            return self._models.data
        url = f"{self.base_url}/models"
        resp = requests.get(url, headers=self._headers(), timeout=self.request_timeout_sec)
        if resp.status_code != 200:
            raise RuntimeError(f"Failed to list models: {resp.status_code} {resp.text}")
        data = resp.json().get("data", [])
        self._models = ModelCache(data=data, ts=time.time())
        return data

    def catalog_descriptors(self) -> List[ModelDescriptor]:
        """Video models from the provider catalog, in catalog order."""
        descriptors = []
        for item in self.list_models():
            tasks = CATALOG_TASKS.get(item.get("type", ""))
            if not tasks or "video" not in item.get("type", ""):
                continue
            descriptors.append(
                ModelDescriptor(
                    id=item["id"],
                    modality=Modality.VIDEO,
                    tasks=frozenset(tasks),
                    provider_id="wavespeed",
                    display_name=item.get("name", item["id"]),
                )
            )
        return descriptors

    def run_model(self, route: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        url = f"{self.base_url}/{route}"
        resp = requests.post(url, headers=self._headers(json_body=True), json=payload, timeout=self.request_timeout_sec)
        if resp.status_code != 200:
            raise RuntimeError(f"Submit failed: {resp.status_code} {resp.text}")
        data = resp.json().get("data", {})
        if isinstance(data.get("urls"), dict):
            data["result_url"] = data["urls"].get("get")
        return data

    def fetch_result(self, task_id: str) -> Dict[str, Any]:
        url = f"{self.base_url}/predictions/{task_id}/result"
        resp = requests.get(url, headers=self._headers(), timeout=self.request_timeout_sec)
        if resp.status_code != 200:
            raise RuntimeError(f"Poll failed: {resp.status_code} {resp.text}")
        return resp.json().get("data", {})

    async def submit_generation(self, request: GenerationRequest) -> Dict[str, Any]:
        data = await asyncio.to_thread(self.run_model, request.model.route, request.to_payload())
        task_id = data.get("id")
        if not task_id:
            raise RuntimeError(f"Submit returned no task id: {data}")
        return {"job_id": str(task_id), "result_url": data.get("result_url")}

    async def get_job_status(self, job_id: str) -> Dict[str, Any]:
        data = await asyncio.to_thread(self.fetch_result, job_id)
        outputs = data.get("outputs") or []
        return {
            "status": data.get("status") or "processing",
            "progress": data.get("progress"),
            "result_url": outputs[0] if outputs else None,
            "error_details": data.get("error") or None,
        }
