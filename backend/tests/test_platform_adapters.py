import asyncio
import json
from urllib.parse import parse_qs

import httpx
import pytest

from app.core.config import settings
from app.integrations.credential_provider import PlatformCredential
from app.integrations.platform_adapters import (
    AdapterAuthError,
    AdapterPermanentError,
    AdapterResolutionError,
    AdapterRetryableError,
    CaptionTooLongError,
    PublicationContent,
    get_platform_adapter,
    list_registered_platforms,
)
from app.integrations.platform_adapters.facebook_adapter import FacebookAdapter
from app.integrations.platform_adapters.instagram_adapter import InstagramAdapter
from app.integrations.platform_adapters.linkedin_adapter import DuplicateShareError, LinkedInAdapter
from app.integrations.platform_adapters.threads_adapter import ThreadsAdapter
from app.integrations.platform_adapters.tiktok_adapter import TikTokAdapter, plan_chunks, raise_for_tiktok_error
from app.integrations.platform_adapters.x_adapter import DuplicatePostError, XAdapter
from app.integrations.platform_adapters.youtube_adapter import YouTubeAdapter, resolve_title

ADAPTER_OPTIONS = {"poll_max_attempts": 3, "poll_delay_seconds": 0}


def _form(request: httpx.Request) -> dict:
    return {key: values[0] for key, values in parse_qs(request.content.decode("utf-8")).items()}


def _image(index: int) -> dict:
    return {"url": f"https://cdn.example.com/{index}.jpg", "type": "image/jpeg", "name": f"{index}.jpg"}


def _adapter(adapter_cls, handler):
    return adapter_cls(transport=httpx.MockTransport(handler), **ADAPTER_OPTIONS)


def test_registry_discovers_every_platform():
    assert list_registered_platforms() == ["facebook", "instagram", "linkedin", "threads", "tiktok", "x", "youtube"]
    assert XAdapter.get_capabilities()["max_length"] == 280
    assert isinstance(get_platform_adapter(" Instagram "), InstagramAdapter)

    with pytest.raises(AdapterResolutionError):
        get_platform_adapter("myspace")


def test_base_response_mapping():
    adapter = XAdapter()
    request = httpx.Request("POST", "https://example.com")
    with pytest.raises(AdapterAuthError):
        adapter.raise_for_response(httpx.Response(401, request=request), action="publish")
    with pytest.raises(AdapterRetryableError):
        adapter.raise_for_response(httpx.Response(429, request=request), action="publish")
    with pytest.raises(AdapterRetryableError):
        adapter.raise_for_response(httpx.Response(503, request=request), action="publish")
    with pytest.raises(AdapterPermanentError):
        adapter.raise_for_response(httpx.Response(400, request=request), action="publish")
    adapter.raise_for_response(httpx.Response(201, request=request), action="publish")


def test_content_accepts_camel_case_keys():
    content = PublicationContent.model_validate(
        {
            "caption": "hello",
            "optionId": "instagram_story",
            "mediaFiles": [{"url": "https://cdn.example.com/a.mp4", "type": "video/mp4", "chunkDir": "abc", "totalChunks": 2}],
        }
    )
    assert content.variant == "story"
    assert content.media_files[0].is_video
    assert content.media_files[0].chunk_dir == "abc"
    assert content.media_files[0].total_chunks == 2


def test_instagram_carousel_child_failure_creates_no_parent():
    requests: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        if request.url.path.endswith("/ig-1/media"):
            children = [r for r in requests if r.url.path.endswith("/ig-1/media")]
            if len(children) == 2:
                return httpx.Response(400, json={"error": {"message": "Invalid image", "code": 100}})
            return httpx.Response(200, json={"id": f"child-{len(children)}"})
        return httpx.Response(200, json={"id": "unexpected"})

    adapter = _adapter(InstagramAdapter, handler)
    content = {"caption": "carousel", "mediaFiles": [_image(1), _image(2), _image(3)]}

    with pytest.raises(AdapterPermanentError, match="carousel item 2 failed"):
        asyncio.run(adapter.publish(PlatformCredential(access_token="t", account_id="ig-1"), content))

    assert len(requests) == 2
    assert all(_form(request).get("is_carousel_item") == "true" for request in requests)
    assert not any(_form(request).get("media_type") == "CAROUSEL" for request in requests)
    assert not any(request.url.path.endswith("media_publish") for request in requests)


def test_instagram_carousel_publishes_parent_with_children():
    requests: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        if request.url.path.endswith("/media_publish"):
            return httpx.Response(200, json={"id": "media-99"})
        form = _form(request)
        if form.get("media_type") == "CAROUSEL":
            return httpx.Response(200, json={"id": "parent-1"})
        return httpx.Response(200, json={"id": f"child-{len(requests)}"})

    adapter = _adapter(InstagramAdapter, handler)
    content = {"caption": "carousel", "mediaFiles": [_image(1), _image(2)]}
    result = asyncio.run(adapter.publish(PlatformCredential(access_token="t", account_id="ig-1"), content))

    parent = _form(requests[2])
    assert parent["children"] == "child-1,child-2"
    assert parent["caption"] == "carousel"
    assert _form(requests[3])["creation_id"] == "parent-1"
    assert result["external_post_id"] == "media-99"
    assert result["media_type"] == "CAROUSEL"
    assert result["platform"] == "instagram"


def test_instagram_video_container_error_still_attempts_publish():
    requests: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        if request.method == "GET":
            return httpx.Response(200, json={"status_code": "ERROR", "status": "Error: unsupported codec"})
        if request.url.path.endswith("/media_publish"):
            return httpx.Response(200, json={"id": "reel-1"})
        return httpx.Response(200, json={"id": "container-1"})

    adapter = _adapter(InstagramAdapter, handler)
    content = {"caption": "reel", "mediaFiles": [{"url": "http://cdn.example.com/a.mp4", "type": "video/mp4"}]}
    result = asyncio.run(adapter.publish(PlatformCredential(access_token="t", account_id="ig-1"), content))

    container_form = _form(requests[0])
    assert container_form["media_type"] == "REELS"
    assert container_form["video_url"] == "https://cdn.example.com/a.mp4"
    assert result["container_status"] == "ERROR"
    assert result["external_post_id"] == "reel-1"


def test_instagram_requires_media_and_rejects_long_caption():
    adapter = _adapter(InstagramAdapter, lambda request: httpx.Response(500))
    credential = PlatformCredential(access_token="t", account_id="ig-1")
    with pytest.raises(AdapterPermanentError):
        asyncio.run(adapter.publish(credential, {"caption": "text only"}))
    with pytest.raises(CaptionTooLongError):
        asyncio.run(adapter.publish(credential, {"caption": "a" * 2201, "mediaFiles": [_image(1)]}))


def test_meta_auth_error_code_maps_to_auth_error():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(400, json={"error": {"message": "Session expired", "code": 190}})

    adapter = _adapter(InstagramAdapter, handler)
    with pytest.raises(AdapterAuthError):
        asyncio.run(
            adapter.publish(PlatformCredential(access_token="t", account_id="ig-1"), {"mediaFiles": [_image(1)]})
        )


def test_threads_text_post_uses_text_container():
    requests: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        if request.url.path.endswith("/threads_publish"):
            return httpx.Response(200, json={"id": "thread-post-1"})
        return httpx.Response(200, json={"id": "container-1"})

    adapter = _adapter(ThreadsAdapter, handler)
    result = asyncio.run(
        adapter.publish(PlatformCredential(access_token="t", account_id="th-1"), {"caption": "hello threads"})
    )

    assert _form(requests[0]) == {"media_type": "TEXT", "access_token": "t", "text": "hello threads"}
    assert _form(requests[1])["creation_id"] == "container-1"
    assert result["external_post_id"] == "thread-post-1"


def test_threads_caption_limit():
    adapter = _adapter(ThreadsAdapter, lambda request: httpx.Response(500))
    with pytest.raises(CaptionTooLongError):
        asyncio.run(adapter.publish(PlatformCredential(access_token="t", account_id="th-1"), {"caption": "a" * 501}))


def test_facebook_multi_photo_uses_page_token_and_attached_media():
    requests: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        if request.url.path.endswith("/photos"):
            return httpx.Response(200, json={"id": f"photo-{len(requests)}"})
        return httpx.Response(200, json={"id": "page-1_post-1"})

    adapter = _adapter(FacebookAdapter, handler)
    credential = PlatformCredential(access_token="user-token", account_id="page-1", extra={"page_access_token": "page-token"})
    result = asyncio.run(adapter.publish(credential, {"caption": "album", "mediaFiles": [_image(1), _image(2)]}))

    photo_forms = [_form(request) for request in requests[:2]]
    assert all(form["published"] == "false" and form["access_token"] == "page-token" for form in photo_forms)
    feed = _form(requests[2])
    assert requests[2].url.path.endswith("/page-1/feed")
    assert json.loads(feed["attached_media"]) == [{"media_fbid": "photo-1"}, {"media_fbid": "photo-2"}]
    assert result["publication_type"] == "multi_photo"
    assert result["external_post_id"] == "page-1_post-1"


def test_facebook_multi_photo_failure_skips_feed_post():
    requests: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        if len(requests) == 2:
            return httpx.Response(500, json={"error": {"message": "Service unavailable", "code": 2}})
        return httpx.Response(200, json={"id": f"photo-{len(requests)}"})

    adapter = _adapter(FacebookAdapter, handler)
    credential = PlatformCredential(access_token="t", account_id="page-1")
    with pytest.raises(AdapterRetryableError, match="photo 2 failed"):
        asyncio.run(adapter.publish(credential, {"caption": "album", "mediaFiles": [_image(1), _image(2), _image(3)]}))
    assert not any(request.url.path.endswith("/feed") for request in requests)


def test_facebook_text_post_goes_to_feed():
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path.endswith("/page-1/feed")
        assert _form(request)["link"] == "https://example.com/article"
        return httpx.Response(200, json={"id": "page-1_post-2"})

    adapter = _adapter(FacebookAdapter, handler)
    result = asyncio.run(
        adapter.publish(
            PlatformCredential(access_token="t", account_id="page-1"),
            {"caption": "read this", "link": "https://example.com/article"},
        )
    )
    assert result["publication_type"] == "text"


def test_tiktok_plan_chunks():
    assert plan_chunks(5, 10) == [(0, 4)]
    assert plan_chunks(20, 10) == [(0, 9), (10, 19)]
    assert plan_chunks(25, 10) == [(0, 9), (10, 24)]


def test_tiktok_error_codes():
    raise_for_tiktok_error({"error": {"code": "ok"}}, action="init")
    with pytest.raises(AdapterAuthError):
        raise_for_tiktok_error({"error": {"code": "access_token_invalid"}}, action="init")
    with pytest.raises(AdapterRetryableError):
        raise_for_tiktok_error({"error": {"code": "rate_limit_exceeded"}}, action="init")
    with pytest.raises(AdapterPermanentError):
        raise_for_tiktok_error({"error": {"code": "invalid_params", "message": "bad title"}}, action="init")


def test_tiktok_video_upload_sends_chunks_and_polls(tmp_path, monkeypatch):
    monkeypatch.setattr(settings, "media_upload_dir", str(tmp_path))
    monkeypatch.setattr(settings, "tiktok_chunk_size_bytes", 10)
    (tmp_path / "video.mp4").write_bytes(b"v" * 25)
    requests: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        if request.url.path.endswith("/post/publish/video/init/"):
            return httpx.Response(
                200,
                json={"data": {"publish_id": "pub-1", "upload_url": "https://upload.tiktok.test/1"}, "error": {"code": "ok"}},
            )
        if request.method == "PUT":
            return httpx.Response(201)
        return httpx.Response(200, json={"data": {"status": "PUBLISH_COMPLETE"}, "error": {"code": "ok"}})

    adapter = _adapter(TikTokAdapter, handler)
    content = {"caption": "clip", "mediaFiles": [{"path": "video.mp4", "type": "video/mp4", "size": 25}]}
    result = asyncio.run(adapter.publish(PlatformCredential(access_token="t"), content))

    init_body = json.loads(requests[0].content)
    assert init_body["source_info"] == {
        "source": "FILE_UPLOAD",
        "video_size": 25,
        "chunk_size": 10,
        "total_chunk_count": 2,
    }
    puts = [request for request in requests if request.method == "PUT"]
    assert [request.headers["Content-Range"] for request in puts] == ["bytes 0-9/25", "bytes 10-24/25"]
    assert [len(request.content) for request in puts] == [10, 15]
    assert result["publish_status"] == "PUBLISH_COMPLETE"
    assert result["external_post_id"] == "pub-1"
    assert "status_unresolved" not in result


def test_tiktok_unresolved_status_counts_as_published():
    polls: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path.endswith("/post/publish/content/init/"):
            body = json.loads(request.content)
            assert body["source_info"]["source"] == "PULL_FROM_URL"
            return httpx.Response(200, json={"data": {"publish_id": "pub-2"}, "error": {"code": "ok"}})
        polls.append(request)
        return httpx.Response(200, json={"data": {"status": "PROCESSING_DOWNLOAD"}, "error": {"code": "ok"}})

    adapter = _adapter(TikTokAdapter, handler)
    result = asyncio.run(
        adapter.publish(PlatformCredential(access_token="t"), {"caption": "photos", "mediaFiles": [_image(1), _image(2)]})
    )

    assert len(polls) == ADAPTER_OPTIONS["poll_max_attempts"]
    assert result["publish_status"] is None
    assert result["status_unresolved"] is True


def test_tiktok_failed_status_is_permanent():
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path.endswith("/post/publish/content/init/"):
            return httpx.Response(200, json={"data": {"publish_id": "pub-3"}, "error": {"code": "ok"}})
        return httpx.Response(200, json={"data": {"status": "FAILED", "fail_reason": "picture_size_check_failed"}})

    adapter = _adapter(TikTokAdapter, handler)
    with pytest.raises(AdapterPermanentError, match="picture_size_check_failed"):
        asyncio.run(adapter.publish(PlatformCredential(access_token="t"), {"mediaFiles": [_image(1)]}))


def test_x_publishes_text():
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.headers["Authorization"] == "Bearer t"
        assert json.loads(request.content) == {"text": "hello x"}
        return httpx.Response(201, json={"data": {"id": "1789", "text": "hello x"}})

    adapter = _adapter(XAdapter, handler)
    result = asyncio.run(adapter.publish(PlatformCredential(access_token="t"), {"caption": "hello x"}))
    assert result == {"external_post_id": "1789", "text": "hello x", "platform": "x"}


@pytest.mark.parametrize(
    ("status_code", "body", "error_cls"),
    [
        (429, {"title": "Too Many Requests", "detail": "Too Many Requests"}, AdapterRetryableError),
        (401, {"title": "Unauthorized", "detail": "Unauthorized"}, AdapterAuthError),
        (403, {"detail": "You are not allowed to create a Tweet with duplicate content."}, DuplicatePostError),
        (400, {"errors": [{"message": "Invalid request"}]}, AdapterPermanentError),
    ],
)
def test_x_error_mapping(status_code, body, error_cls):
    adapter = _adapter(XAdapter, lambda request: httpx.Response(status_code, json=body))
    with pytest.raises(error_cls):
        asyncio.run(adapter.publish(PlatformCredential(access_token="t"), {"caption": "hello x"}))


def test_linkedin_share_reads_restli_id_header():
    captured: dict = {}

    def handler(request: httpx.Request) -> httpx.Response:
        captured["body"] = json.loads(request.content)
        captured["headers"] = request.headers
        return httpx.Response(201, headers={"x-restli-id": "urn:li:share:42"})

    adapter = _adapter(LinkedInAdapter, handler)
    result = asyncio.run(
        adapter.publish(
            PlatformCredential(access_token="t", account_id="abc123"),
            {"caption": "hello linkedin", "mediaFiles": [_image(1)]},
        )
    )

    assert result["external_post_id"] == "urn:li:share:42"
    assert captured["body"]["author"] == "urn:li:person:abc123"
    share = captured["body"]["specificContent"]["com.linkedin.ugc.ShareContent"]
    assert share["shareMediaCategory"] == "ARTICLE"
    assert share["media"][0]["originalUrl"] == "https://cdn.example.com/1.jpg"
    assert captured["headers"]["X-Restli-Protocol-Version"] == "2.0.0"


def test_linkedin_duplicate_share_is_permanent():
    adapter = _adapter(LinkedInAdapter, lambda request: httpx.Response(422, text="Content is a duplicate of urn:li:share:1"))
    with pytest.raises(DuplicateShareError):
        asyncio.run(adapter.publish(PlatformCredential(access_token="t", account_id="abc"), {"caption": "again"}))


def test_youtube_resolve_title():
    assert resolve_title(PublicationContent(caption="\n  First line  \nsecond")) == "First line"
    assert resolve_title(PublicationContent(caption="", title=" Given ")) == "Given"
    assert resolve_title(PublicationContent(caption="")) == "Untitled"
    assert len(resolve_title(PublicationContent(caption="a" * 300))) == 100


def test_youtube_resumable_upload(tmp_path, monkeypatch):
    monkeypatch.setattr(settings, "media_upload_dir", str(tmp_path))
    monkeypatch.setattr(settings, "youtube_chunk_size_bytes", 8)
    (tmp_path / "clip.mp4").write_bytes(b"y" * 20)
    ranges: list[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        if request.method == "POST":
            assert request.url.params["uploadType"] == "resumable"
            assert request.headers["X-Upload-Content-Length"] == "20"
            assert json.loads(request.content)["snippet"]["title"] == "My video"
            return httpx.Response(200, headers={"Location": "https://upload.youtube.test/session/1"})
        if request.method == "PUT":
            ranges.append(request.headers["Content-Range"])
            received = {1: "bytes=0-7", 2: "bytes=0-15"}.get(len(ranges))
            if received:
                return httpx.Response(308, headers={"Range": received})
            return httpx.Response(200, json={"id": "vid-1"})
        return httpx.Response(
            200,
            json={"items": [{"status": {"uploadStatus": "processed"}, "processingDetails": {"processingStatus": "succeeded"}}]},
        )

    adapter = _adapter(YouTubeAdapter, handler)
    result = asyncio.run(
        adapter.publish(
            PlatformCredential(access_token="t"),
            {"caption": "My video\nDescription", "mediaFiles": [{"path": "clip.mp4", "type": "video/mp4"}]},
        )
    )

    assert ranges == ["bytes 0-7/20", "bytes 8-15/20", "bytes 16-19/20"]
    assert result["video_id"] == "vid-1"
    assert result["processing_status"] == "succeeded"
    assert result["url"] == "https://www.youtube.com/watch?v=vid-1"


def test_youtube_upload_without_progress_gives_up(tmp_path, monkeypatch):
    monkeypatch.setattr(settings, "media_upload_dir", str(tmp_path))
    monkeypatch.setattr(settings, "youtube_chunk_size_bytes", 10)
    (tmp_path / "clip.mp4").write_bytes(b"y" * 40)
    puts: list[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        if request.method == "POST":
            return httpx.Response(200, headers={"Location": "https://upload.youtube.test/session/2"})
        puts.append(request.headers["Content-Range"])
        return httpx.Response(308, headers={"Range": "bytes=0-9"})

    adapter = _adapter(YouTubeAdapter, handler)
    with pytest.raises(AdapterRetryableError, match="no progress"):
        asyncio.run(
            adapter.publish(
                PlatformCredential(access_token="t"),
                {"caption": "Stuck", "mediaFiles": [{"path": "clip.mp4", "type": "video/mp4"}]},
            )
        )

    assert len(puts) == ADAPTER_OPTIONS["poll_max_attempts"] + 1
    assert puts[0] == "bytes 0-9/40"
    assert set(puts[1:]) == {"bytes 10-19/40"}


def test_youtube_rejects_images_and_missing_media_is_permanent(tmp_path, monkeypatch):
    monkeypatch.setattr(settings, "media_upload_dir", str(tmp_path))
    adapter = _adapter(YouTubeAdapter, lambda request: httpx.Response(500))
    with pytest.raises(AdapterPermanentError):
        asyncio.run(adapter.publish(PlatformCredential(access_token="t"), {"mediaFiles": [_image(1)]}))
    with pytest.raises(AdapterPermanentError, match="media unavailable"):
        asyncio.run(
            adapter.publish(
                PlatformCredential(access_token="t"),
                {"mediaFiles": [{"path": "missing.mp4", "type": "video/mp4"}]},
            )
        )
