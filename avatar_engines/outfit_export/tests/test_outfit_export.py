"""Tests for batched outfit export."""
import asyncio
import io
import zipfile

import httpx
import pytest
from PIL import Image

from avatar_engines.asset_bundle.service import AssetBundleBuilder
from avatar_engines.common.errors import PoseUnavailable
from avatar_engines.outfit_export.service import (
    ExportItem,
    OutfitExporter,
    failure_entry,
    render_entry_name,
    run_batched,
    thumbnail_entry_name,
)
from avatar_engines.roblox_identity.service import RobloxIdentityResolver
from avatar_engines.scene_engine.view.service import BatchRenderer

HOST = "https://{type}{shard}.cdn.test"
MODERATED = {2}
NO_BODY = {4}
BROKEN_TEXTURE = {6}


def _quad(name, x, y):
    return (
        f"g {name}\n"
        f"v {x - 0.5} {y - 0.5} 0\nv {x + 0.5} {y - 0.5} 0\n"
        f"v {x + 0.5} {y + 0.5} 0\nv {x - 0.5} {y + 0.5} 0\n"
        "f -4 -3 -2 -1\n"
    )


FIGURE_OBJ = "usemtl skin\n" + _quad("Player1", 0, 3) + _quad("Player2", 0, 2) + _quad("Player7", 1, 2)
PROP_OBJ = "usemtl skin\n" + _quad("Handle", 0, 0)


def _png():
    buf = io.BytesIO()
    Image.new("RGBA", (2, 2), (200, 150, 100, 255)).save(buf, format="PNG")
    return buf.getvalue()


def _handler(requests=None):
    def handler(request):
        if requests is not None:
            requests.append(request)
        host = request.url.host
        if host == "thumbnails.roproxy.com" and request.url.path == "/v1/users/outfits":
            ids = request.url.params["userOutfitIds"].split(",")
            data = [
                {"targetId": int(i), "state": "Pending" if int(i) in MODERATED else "Completed", "imageUrl": f"https://img.test/{i}.png"}
                for i in ids
            ]
            return httpx.Response(200, json={"data": data})
        if host == "img.test":
            return httpx.Response(200, content=_png())
        if host == "thumbnails.roproxy.com":
            outfit_id = int(request.url.params["outfitId"])
            if outfit_id in MODERATED:
                return httpx.Response(200, json={"data": [{"targetId": outfit_id, "state": "Blocked", "imageUrl": None}]})
            return httpx.Response(200, json={"imageUrl": f"https://manifest.test/{outfit_id}", "state": "Completed"})
        if host == "manifest.test":
            outfit_id = request.url.path.strip("/")
            return httpx.Response(
                200, json={"obj": f"obj{outfit_id}", "mtl": f"mtl{outfit_id}", "textures": [f"texhash{outfit_id}"]}
            )
        if host.endswith(".cdn.test"):
            asset = request.url.path.strip("/")
            if asset.startswith("mtl"):
                return httpx.Response(200, text=f"newmtl skin\nKd 1 1 1\nmap_Kd texhash{asset[3:]}\n")
            if asset.startswith("texhash"):
                if int(asset[7:]) in BROKEN_TEXTURE:
                    return httpx.Response(404, text="gone")
                return httpx.Response(200, content=_png())
            if asset.startswith("obj"):
                return httpx.Response(200, text=PROP_OBJ if int(asset[3:]) in NO_BODY else FIGURE_OBJ)
        return httpx.Response(404, text="nope")

    return handler


async def _no_sleep(seconds):
    return None


def _exporter(requests=None):
    client = httpx.AsyncClient(transport=httpx.MockTransport(_handler(requests)))
    resolver = RobloxIdentityResolver(client, sleep=_no_sleep)
    builder = AssetBundleBuilder(client, sleep=_no_sleep, host_template=HOST)
    return OutfitExporter(resolver, builder, renderer=BatchRenderer(width=32, height=32))


ITEMS = [ExportItem(id=1, name="A"), ExportItem(id=2, name="B"), ExportItem(id=3, name="C")]


def test_run_batched_isolates_failures_and_keeps_order():
    in_flight = []
    peak = []

    async def worker(n):
        in_flight.append(n)
        peak.append(len(in_flight))
        await asyncio.sleep(0)
        in_flight.remove(n)
        if n == 2:
            raise RuntimeError("boom")
        return n * 10

    outcomes = asyncio.run(run_batched([1, 2, 3, 4, 5], worker, batch_size=2))
    assert [o.item for o in outcomes] == [1, 2, 3, 4, 5]
    assert [o.ok for o in outcomes] == [True, False, True, True, True]
    assert outcomes[0].value == 10
    assert str(outcomes[1].error) == "boom"
    assert max(peak) <= 2


def test_failure_entry_and_render_names():
    assert failure_entry(7, RuntimeError("broken")) == ("FAILED_7.txt", b"Error: broken")
    assert render_entry_name(ExportItem(id=5, name="Red Fit!")) == "Render_5_Red_Fit_.png"
    assert render_entry_name(ExportItem(id=5)) == "Render_5_Outfit.png"


def test_export_bundles_records_moderated_outfit():
    data = asyncio.run(_exporter().export_bundles(ITEMS, batch_size=3))
    with zipfile.ZipFile(io.BytesIO(data)) as zf:
        assert zf.namelist() == ["Outfit_1_A.zip", "FAILED_2.txt", "Outfit_3_C.zip"]
        assert zf.read("FAILED_2.txt") == b"Error: One or more accessories have been moderated in this outfit"
        with zipfile.ZipFile(io.BytesIO(zf.read("Outfit_1_A.zip"))) as inner:
            assert sorted(inner.namelist()) == sorted(
                ["Outfit_1_A.mtl", "texture_1.png", "Outfit_1_A.obj", "Outfit_1_A_meta.json"]
            )
            assert b"map_Kd texture_1.png" in inner.read("Outfit_1_A.mtl")


def test_export_renders_with_pose():
    data = asyncio.run(_exporter().export_renders(ITEMS, pose="wave", batch_size=1))
    with zipfile.ZipFile(io.BytesIO(data)) as zf:
        assert zf.namelist() == ["Render_1_A.png", "FAILED_2.txt", "Render_3_C.png"]
        image = Image.open(io.BytesIO(zf.read("Render_3_C.png")))
        assert image.size == (32, 32)


def test_render_without_body_parts_falls_back_to_unposed():
    png = asyncio.run(_exporter().render_outfit(4, "Prop", pose="hero"))
    assert png.startswith(b"\x89PNG")


def test_strict_pose_requires_body_parts():
    with pytest.raises(PoseUnavailable):
        asyncio.run(_exporter().render_outfit(4, "Prop", pose="hero", strict_pose=True))


def test_bundle_fetch_order_is_material_textures_mesh():
    requests = []
    asyncio.run(_exporter(requests).build_outfit_bundle(1, "A"))
    cdn_paths = [r.url.path.strip("/") for r in requests if r.url.host.endswith(".cdn.test")]
    assert cdn_paths == ["mtl1", "texhash1", "obj1"]


def test_export_bundles_survives_a_failure_mid_fetch():
    requests = []
    items = [ExportItem(id=1, name="A"), ExportItem(id=6, name="B"), ExportItem(id=3, name="C")]
    data = asyncio.run(_exporter(requests).export_bundles(items, batch_size=3))
    with zipfile.ZipFile(io.BytesIO(data)) as zf:
        assert zf.namelist() == ["Outfit_1_A.zip", "FAILED_6.txt", "Outfit_3_C.zip"]
        assert zf.read("FAILED_6.txt").startswith(b"Error: HTTP 404")
    cdn_paths = [r.url.path.strip("/") for r in requests if r.url.host.endswith(".cdn.test")]
    assert "mtl6" in cdn_paths
    assert "texhash6" in cdn_paths
    assert "obj6" not in cdn_paths


def test_export_thumbnails_in_batches():
    requests = []
    items = ITEMS + [ExportItem(id=5, name="x" * 80)]
    data = asyncio.run(_exporter(requests).export_thumbnails(items, batch_size=3))
    with zipfile.ZipFile(io.BytesIO(data)) as zf:
        assert zf.namelist() == ["Render_1_A.png", "FAILED_2.txt", "Render_3_C.png", f"Render_5_{'x' * 50}.png"]
        assert zf.read("FAILED_2.txt") == b"Error: Render not available."
    lookups = [r for r in requests if r.url.path == "/v1/users/outfits"]
    assert len(lookups) == 1
    assert lookups[0].url.params["userOutfitIds"] == "1,2,3,5"
    assert thumbnail_entry_name(ExportItem(id=9)) == "Render_9_Outfit.png"
