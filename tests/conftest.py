"""Shared fixtures: an in-process fake catalog server built on aiohttp.web."""

from __future__ import annotations

import itertools
import json
from pathlib import Path

import pytest
import pytest_asyncio
from aiohttp import web
from aiohttp.test_utils import TestServer

from studymemo.catalog.client import CatalogClient
from studymemo.config import BackupConfig, CatalogConfig, StudyMemoConfig


class FakeCatalog:
    """Just enough of the Orthanc REST API for the memo tiers."""

    def __init__(self) -> None:
        self.online = True
        self.lookup_enabled = True
        self.base_url = ""
        self.studies: dict[str, dict] = {}  # id → {uid, description, series, metadata}
        self.series: dict[str, dict] = {}  # id → {study, instances}
        self.instances: dict[str, dict[str, str]] = {}  # id → tag → value
        self.instance_series: dict[str, str] = {}
        self.requests: list[tuple[str, str]] = []
        self.failing: set[tuple[str, str]] = set()  # (method, path) answered with 500
        self._ids = itertools.count(1)

    # ── Fixture helpers ──────────────────────────────────────

    def add_study(
        self, uid: str, description: str = "CT Chest", n_series: int = 1, n_instances: int = 1
    ) -> str:
        study_id = f"study-{next(self._ids)}"
        self.studies[study_id] = {"uid": uid, "description": description, "series": [], "metadata": {}}
        for _ in range(n_series):
            series_id = f"series-{next(self._ids)}"
            self.series[series_id] = {"study": study_id, "instances": []}
            self.studies[study_id]["series"].append(series_id)
            for _ in range(n_instances):
                self.add_instance(series_id, {})
        return study_id

    def add_instance(self, series_id: str, tags: dict[str, str]) -> str:
        instance_id = f"instance-{next(self._ids)}"
        self.instances[instance_id] = dict(tags)
        self.instance_series[instance_id] = series_id
        self.series[series_id]["instances"].append(instance_id)
        return instance_id

    def count(self, method: str, prefix: str) -> int:
        return sum(1 for m, p in self.requests if m == method and p.startswith(prefix))

    # ── Application ──────────────────────────────────────────

    def make_app(self) -> web.Application:
        app = web.Application(middlewares=[self._middleware])
        app.router.add_get("/studies", self._list_studies)
        app.router.add_get("/studies/{id}", self._get_study)
        app.router.add_get("/studies/{id}/metadata/{key}", self._get_metadata)
        app.router.add_put("/studies/{id}/metadata/{key}", self._put_metadata)
        app.router.add_delete("/studies/{id}/metadata/{key}", self._delete_metadata)
        app.router.add_get("/series/{id}", self._get_series)
        app.router.add_get("/instances/{id}/tags", self._get_tags)
        app.router.add_post("/instances/{id}/modify", self._modify)
        app.router.add_post("/instances", self._store)
        app.router.add_delete("/instances/{id}", self._delete_instance)
        app.router.add_post("/tools/lookup", self._lookup)
        return app

    @web.middleware
    async def _middleware(self, request: web.Request, handler):
        self.requests.append((request.method, request.path))
        if not self.online:
            return web.Response(status=503, text="offline")
        if (request.method, request.path) in self.failing:
            return web.Response(status=500, text="boom")
        return await handler(request)

    def _study_or_404(self, request: web.Request) -> dict:
        study = self.studies.get(request.match_info["id"])
        if study is None:
            raise web.HTTPNotFound()
        return study

    async def _list_studies(self, request: web.Request) -> web.Response:
        ids = list(self.studies)
        if "limit" in request.query:
            ids = ids[: int(request.query["limit"])]
        return web.json_response(ids)

    async def _get_study(self, request: web.Request) -> web.Response:
        study = self._study_or_404(request)
        return web.json_response(
            {
                "ID": request.match_info["id"],
                "MainDicomTags": {
                    "StudyInstanceUID": study["uid"],
                    "StudyDescription": study["description"],
                },
                "Series": list(study["series"]),
            }
        )

    async def _get_metadata(self, request: web.Request) -> web.Response:
        study = self._study_or_404(request)
        value = study["metadata"].get(request.match_info["key"])
        if value is None:
            raise web.HTTPNotFound()
        return web.Response(text=value)

    async def _put_metadata(self, request: web.Request) -> web.Response:
        study = self._study_or_404(request)
        study["metadata"][request.match_info["key"]] = await request.text()
        return web.Response(text="")

    async def _delete_metadata(self, request: web.Request) -> web.Response:
        study = self._study_or_404(request)
        if study["metadata"].pop(request.match_info["key"], None) is None:
            raise web.HTTPNotFound()
        return web.Response(text="")

    async def _get_series(self, request: web.Request) -> web.Response:
        series = self.series.get(request.match_info["id"])
        if series is None:
            raise web.HTTPNotFound()
        return web.json_response({"ID": request.match_info["id"], "Instances": list(series["instances"])})

    async def _get_tags(self, request: web.Request) -> web.Response:
        tags = self.instances.get(request.match_info["id"])
        if tags is None:
            raise web.HTTPNotFound()
        return web.json_response(
            {tag: {"Name": tag, "Type": "String", "Value": value} for tag, value in tags.items()}
        )

    async def _modify(self, request: web.Request) -> web.Response:
        instance_id = request.match_info["id"]
        tags = self.instances.get(instance_id)
        if tags is None:
            raise web.HTTPNotFound()
        payload = await request.json()
        derived = dict(tags)
        for tag in payload.get("Remove", []):
            derived.pop(tag, None)
        derived.update(payload.get("Replace", {}))
        # The "file" is the tag dict plus its series, enough for _store
        body = json.dumps({"series": self.instance_series[instance_id], "tags": derived})
        return web.Response(body=body.encode(), content_type="application/dicom")

    async def _store(self, request: web.Request) -> web.Response:
        content = json.loads(await request.read())
        series_id = content["series"]
        instance_id = self.add_instance(series_id, content["tags"])
        description = content["tags"].get("0008,1030")
        if description is not None:
            self.studies[self.series[series_id]["study"]]["description"] = description
        return web.json_response({"ID": instance_id, "Status": "Success"})

    async def _delete_instance(self, request: web.Request) -> web.Response:
        instance_id = request.match_info["id"]
        if instance_id not in self.instances:
            raise web.HTTPNotFound()
        del self.instances[instance_id]
        series_id = self.instance_series.pop(instance_id)
        self.series[series_id]["instances"].remove(instance_id)
        return web.json_response({})

    async def _lookup(self, request: web.Request) -> web.Response:
        if not self.lookup_enabled:
            raise web.HTTPNotFound()
        uid = (await request.text()).strip()
        matches = [
            {"ID": study_id, "Type": "Study", "Path": f"/studies/{study_id}"}
            for study_id, study in self.studies.items()
            if study["uid"] == uid
        ]
        return web.json_response(matches)


@pytest_asyncio.fixture
async def catalog():
    fake = FakeCatalog()
    server = TestServer(fake.make_app())
    await server.start_server()
    fake.base_url = f"http://{server.host}:{server.port}"
    yield fake
    await server.close()


@pytest_asyncio.fixture
async def client(catalog: FakeCatalog):
    c = CatalogClient(CatalogConfig(base_url=catalog.base_url))
    yield c
    await c.close()


@pytest.fixture
def config_for(tmp_path: Path):
    """Build a StudyMemoConfig pointing at a catalog URL and a temp backup dir."""

    def _make(base_url: str, **catalog_overrides) -> StudyMemoConfig:
        return StudyMemoConfig(
            catalog=CatalogConfig(base_url=base_url, **catalog_overrides),
            backup=BackupConfig(backup_dir=tmp_path / "backup"),
        )

    return _make
