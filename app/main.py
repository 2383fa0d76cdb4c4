"""
Cloud Gallery.

A thin gallery viewer over an S3-compatible bucket.

Two surfaces share one ListingClient:
- JSON proxy (/gallery/images, /gallery/sas-url, /gallery/refresh-urls)
- HTMX front end (/, /gallery/grid, /gallery/more, /gallery/view/...)

The front end keeps its state in a per-browser GallerySession on the server.
The browser only reports signals: scroll offset, viewport size, sentinel
visibility, clicks and key presses.

Error Semantics:
- 403 = Access credential expired (front end shows the refresh banner)
- 400 = Malformed proxy request
- 404 = Lightbox index out of range / nothing open
- other 4xx/5xx = Upstream listing failure, passed through
"""

import asyncio
import logging
import secrets
import sys
from datetime import datetime, timezone
from pathlib import Path

from fasthtml.common import *
from starlette.responses import JSONResponse, Response

# Add project root to path for imports
project_root = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(project_root))

from core.config import HOST, PORT, DEBUG, LOG_LEVEL, SESSION_SECRET, load_gallery_config
from core.errors import ConfigError, UpstreamError
from core.event_recorder import get_event_recorder
from core.models import Item, format_file_size
from core.navigation import grid_neighbor
from core.refresh import HttpCredentialRefresher
from core.session import GallerySession, Phase, SessionStore
from core.storage import ListingClient
from core.ui_safety import display_name, ensure_utf8_display
from core.virtualizer import VirtualWindow

logging.basicConfig(
    level=getattr(logging, LOG_LEVEL, logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

# Sentinel counts as "near the end" this many px before it scrolls into view
LOAD_MORE_MARGIN = 600

app, rt = fast_app(
    pico=False,
    secret_key=SESSION_SECRET,
    hdrs=(
        Meta(name="viewport", content="width=device-width, initial-scale=1"),
        Script(src="https://cdn.tailwindcss.com"),
        # Global: viewport geometry sent with every grid request
        Script("""
            function galleryViewport() {
                var el = document.getElementById('gallery-scroll');
                if (!el) return {};
                return {width: el.clientWidth, scroll: el.scrollTop, height: el.clientHeight};
            }
        """),
        # Global: delegated listeners for clicks, keys and lightbox zoom. Grid and lightbox
        # markup is replaced by HTMX swaps, so nothing binds handlers inline.
        Script("""
            function galleryOpen(idx) {
                htmx.ajax('GET', '/gallery/view/' + idx, {target: '#lightbox', swap: 'innerHTML'});
            }
            function galleryNav(action) {
                htmx.ajax('POST', '/gallery/view/' + action, {target: '#lightbox', swap: 'innerHTML'});
            }
            function lightboxOpen() {
                var lb = document.getElementById('lightbox');
                return lb && lb.children.length > 0;
            }
            // Lightbox zoom: 0.5x-5x, stored on the image so a swap resets it
            var lightboxDrag = null;
            function lightboxImage() {
                return document.getElementById('lightbox-image');
            }
            function lightboxApply(img, zoom, x, y) {
                zoom = Math.max(0.5, Math.min(5, zoom));
                if (zoom <= 1) { x = 0; y = 0; }
                img.setAttribute('data-zoom', zoom);
                img.setAttribute('data-pan-x', x);
                img.setAttribute('data-pan-y', y);
                img.style.transform = 'scale(' + zoom + ') translate(' + x + 'px, ' + y + 'px)';
                img.style.cursor = zoom > 1 ? (lightboxDrag ? 'grabbing' : 'grab') : 'zoom-in';
                var label = document.getElementById('lightbox-zoom');
                if (label) {
                    label.textContent = Math.round(zoom * 100) + '%';
                    label.classList.toggle('hidden', zoom === 1);
                }
            }
            function lightboxZoom(img) {
                return parseFloat(img.getAttribute('data-zoom')) || 1;
            }
            document.addEventListener('wheel', function(evt) {
                var img = lightboxImage();
                if (!img || !evt.target.closest('#lightbox-content')) return;
                evt.preventDefault();
                lightboxApply(img, lightboxZoom(img) * (evt.deltaY > 0 ? 0.9 : 1.1),
                    parseFloat(img.getAttribute('data-pan-x')), parseFloat(img.getAttribute('data-pan-y')));
            }, {passive: false});
            document.addEventListener('mousedown', function(evt) {
                var img = lightboxImage();
                if (!img || evt.target !== img || lightboxZoom(img) <= 1) return;
                evt.preventDefault();
                lightboxDrag = {
                    x: evt.clientX - parseFloat(img.getAttribute('data-pan-x')),
                    y: evt.clientY - parseFloat(img.getAttribute('data-pan-y')),
                    moved: false,
                };
            });
            document.addEventListener('mousemove', function(evt) {
                var img = lightboxImage();
                if (!lightboxDrag || !img) return;
                lightboxDrag.moved = true;
                lightboxApply(img, lightboxZoom(img), evt.clientX - lightboxDrag.x, evt.clientY - lightboxDrag.y);
            });
            document.addEventListener('mouseup', function() {
                if (!lightboxDrag) return;
                var img = lightboxImage();
                var moved = lightboxDrag.moved;
                lightboxDrag = null;
                if (img) {
                    img.style.cursor = lightboxZoom(img) > 1 ? 'grab' : 'zoom-in';
                    // The click that ends a drag must not reset the zoom
                    if (moved) img.setAttribute('data-dragged', '1');
                }
            });
            // Per-image spinner until the full image has loaded
            document.addEventListener('load', function(evt) {
                if (evt.target.id !== 'lightbox-image') return;
                evt.target.classList.remove('opacity-0');
                var spin = document.getElementById('lightbox-spinner');
                if (spin) spin.classList.add('hidden');
            }, true);
            // No page scrolling behind an open lightbox
            document.addEventListener('htmx:afterSwap', function() {
                document.body.style.overflow = lightboxOpen() ? 'hidden' : '';
            });
            document.addEventListener('click', function(evt) {
                var img = lightboxImage();
                if (img && evt.target === img) {
                    if (img.getAttribute('data-dragged')) img.removeAttribute('data-dragged');
                    else lightboxApply(img, lightboxZoom(img) === 1 ? 2 : 1, 0, 0);
                    return;
                }
                var el = evt.target.closest('[data-action]');
                if (!el) return;
                var action = el.getAttribute('data-action');
                if (action === 'open-image') galleryOpen(el.getAttribute('data-index'));
                else if (action === 'lightbox-prev') galleryNav('prev');
                else if (action === 'lightbox-next') galleryNav('next');
                else if (action === 'lightbox-close') galleryNav('close');
            });
            document.addEventListener('keydown', function(evt) {
                if (lightboxOpen()) {
                    if (evt.key === 'Escape') galleryNav('close');
                    else if (evt.key === 'ArrowLeft') galleryNav('prev');
                    else if (evt.key === 'ArrowRight') galleryNav('next');
                    else return;
                    evt.preventDefault();
                    return;
                }
                var cell = evt.target.closest ? evt.target.closest('[data-index]') : null;
                if (!cell) return;
                if (evt.key === 'Enter' || evt.key === ' ') {
                    evt.preventDefault();
                    galleryOpen(cell.getAttribute('data-index'));
                    return;
                }
                var target = cell.getAttribute('data-' + evt.key.toLowerCase());
                if (target === null || target === cell.getAttribute('data-index')) return;
                var next = document.querySelector('[data-index="' + target + '"]');
                if (next) { evt.preventDefault(); next.focus(); }
            });
            // Image load errors do not bubble; listen in the capture phase.
            // Thumbnail fails -> full image; full image fails -> placeholder.
            document.addEventListener('error', function(evt) {
                var img = evt.target;
                if (!img || img.tagName !== 'IMG') return;
                var full = img.getAttribute('data-fallback');
                if (full) {
                    img.removeAttribute('data-fallback');
                    img.src = full;
                } else if (img.id === 'lightbox-image') {
                    var spin = document.getElementById('lightbox-spinner');
                    if (spin) spin.classList.add('hidden');
                } else {
                    img.classList.add('hidden');
                    var ph = img.parentElement.querySelector('.img-placeholder');
                    if (ph) ph.classList.remove('hidden');
                }
            }, true);
        """),
    ),
)


# --- LIFECYCLE HOOKS ---
@app.on_event("startup")
async def startup_event():
    """Refuse to start without a complete configuration, then log the run start."""
    configure_from_env()
    get_event_recorder().record("RUN_START", {
        "action": "server_start",
        "timestamp_utc": datetime.now(timezone.utc).isoformat(),
    }, actor="system")


@app.on_event("shutdown")
async def shutdown_event():
    get_event_recorder().record("RUN_END", {
        "action": "server_shutdown",
        "timestamp_utc": datetime.now(timezone.utc).isoformat(),
    }, actor="system")
# ---------------------------------------


# =============================================================================
# SERVICE WIRING
# =============================================================================

_listing: ListingClient | None = None
_sessions: SessionStore | None = None


def configure(listing: ListingClient, refresher, **session_options) -> None:
    """
    Install the listing client and credential refresher used by every route.

    session_options are passed to each new GallerySession (max_attempts, backoff).
    """
    global _listing, _sessions
    _listing = listing
    _sessions = SessionStore(lambda: GallerySession(listing, refresher, **session_options))


def configure_from_env() -> None:
    """
    Build services from environment configuration.

    Raises:
        ConfigError: required configuration missing (fatal at startup)
    """
    if _listing is not None:
        return
    config = load_gallery_config()
    configure(
        ListingClient.from_config(config),
        HttpCredentialRefresher(config.refresh_url),
    )
    logger.info("Gallery configured: container=%s prefix=%r", config.container, config.prefix)


def get_listing() -> ListingClient:
    configure_from_env()
    return _listing


def get_session(sess) -> GallerySession:
    """GallerySession for this browser, keyed by an id in the session cookie."""
    configure_from_env()
    session_id = sess.get("gallery_id")
    if not session_id:
        session_id = secrets.token_hex(16)
        sess["gallery_id"] = session_id
    return _sessions.get(session_id)


def error_json(message: str, status: int) -> JSONResponse:
    return JSONResponse({"error": message}, status_code=status)


# =============================================================================
# ROUTES - HEALTH CHECK
# =============================================================================


@rt("/health")
def health():
    """Health check endpoint for deployment."""
    try:
        configure_from_env()
    except ConfigError as e:
        return JSONResponse({"status": "misconfigured", "error": str(e)}, status_code=503)

    return {
        "status": "ok",
        "container": _listing.storage.container,
        "prefix": _listing.prefix,
        "sessions": len(_sessions),
    }


# =============================================================================
# ROUTES - JSON PROXY
# =============================================================================


@rt("/gallery/images")
async def get(continuationToken: str = None):
    """
    One page of images.

    Returns JSON with:
    - images: list of items (key, displayUrl, thumbUrl, byteSize, mediaType, lastModified)
    - continuationToken: cursor for the next page (absent at end-of-listing)
    - hasMore: whether another page exists
    """
    listing = get_listing()
    try:
        page = await asyncio.to_thread(listing.fetch_page, continuationToken or None)
    except UpstreamError as e:
        logger.warning("Error listing images: %s", e)
        return error_json(e.message, e.status)
    except Exception:
        logger.exception("Error listing images")
        return error_json("Failed to list images", 500)

    return JSONResponse(page.to_dict())


@rt("/gallery/sas-url")
async def post(request):
    """Time-limited URL for one object: {containerName, blobName} -> {url}."""
    try:
        data = await request.json()
    except ValueError:
        return error_json("Invalid request", 400)

    if not isinstance(data, dict):
        return error_json("Invalid request", 400)
    container_name = data.get("containerName")
    blob_name = data.get("blobName")
    if not container_name or not blob_name:
        return error_json("containerName and blobName are required.", 400)

    listing = get_listing()
    try:
        url = listing.mint_url(container_name, blob_name)
    except UpstreamError as e:
        logger.warning("Error generating URL: %s", e)
        return error_json(e.message, e.status)
    except Exception:
        logger.exception("Error generating URL")
        return error_json("Failed to generate SAS URL", 500)

    return JSONResponse({"url": url})


@rt("/gallery/refresh-urls")
async def post(request):
    """Re-mint URLs for items whose URLs expired: {images: Item[]} -> Item[]."""
    try:
        data = await request.json()
    except ValueError:
        return error_json("Invalid request", 400)

    images = data.get("images") if isinstance(data, dict) else None
    if not isinstance(images, list):
        return error_json("Images array is required.", 400)

    try:
        items = [Item.from_dict(entry) for entry in images]
    except (ValueError, AttributeError) as e:
        return error_json(f"Invalid image entry: {e}", 400)

    listing = get_listing()
    try:
        refreshed = listing.refresh_items(items)
    except UpstreamError as e:
        logger.warning("Error refreshing image URLs: %s", e)
        return error_json(e.message, e.status)
    except Exception:
        logger.exception("Error refreshing image URLs")
        return error_json("Failed to refresh URLs", 500)

    return JSONResponse([item.to_dict() for item in refreshed])


# =============================================================================
# UI COMPONENTS
# =============================================================================


def spinner(label: str = "") -> Div:
    return Div(
        Div(cls="animate-spin rounded-full h-6 w-6 border-b-2 border-blue-600"),
        Span(label) if label else None,
        cls="flex items-center justify-center space-x-2 text-gray-600 py-8",
    )


def expired_banner(session: GallerySession) -> Div:
    """Credential-expired banner. A state, not an error: content stays visible."""
    refresh_error = session.refresh_error
    return Div(
        Div(
            Div(
                H3("Access Token Expired", cls="text-red-800 font-medium"),
                P("The storage access credential has expired and needs to be refreshed.",
                  cls="text-red-700 text-sm"),
                P(f"Refresh failed: {refresh_error.message}", cls="text-red-900 text-sm font-semibold mt-1")
                if refresh_error else None,
                cls="flex-1",
            ),
            Button(
                "Refresh Token",
                hx_post="/gallery/refresh-token",
                hx_target="#gallery-root",
                hx_swap="outerHTML",
                cls="bg-red-600 text-white px-4 py-2 rounded-lg hover:bg-red-700 text-sm",
                type="button",
            ),
            cls="flex items-center",
        ),
        id="expired-banner",
        cls="bg-red-50 border border-red-200 rounded-lg p-4 m-4",
    )


def error_view(error: UpstreamError) -> Div:
    """Full-page error for a failed initial load."""
    return Div(
        H2("Could not load the gallery", cls="text-xl font-bold text-red-600 mb-2"),
        P(ensure_utf8_display(error.message), cls="text-sm text-gray-600 mb-4"),
        Button(
            "Retry",
            hx_post="/gallery/retry",
            hx_target="#gallery-root",
            hx_swap="outerHTML",
            cls="bg-blue-600 text-white px-4 py-2 rounded hover:bg-blue-700",
            type="button",
        ),
        id="gallery-error",
        cls="flex flex-col items-center justify-center py-16 text-center",
    )


def empty_view() -> Div:
    return Div(
        H3("No images found", cls="text-lg font-medium mb-2"),
        P("Try adjusting the prefix or check your configuration.", cls="text-sm"),
        cls="flex flex-col items-center justify-center py-16 text-gray-500",
    )


def image_cell(item: Item, index: int, columns: int, total: int) -> Div:
    """
    One grid cell. Navigation targets for arrow keys are precomputed into
    data attributes so the client-side listener only has to follow them.
    """
    name = display_name(item.key)
    src = item.thumb_url or item.display_url
    img_attrs = {"data-fallback": item.display_url} if item.thumb_url else {}
    return Div(
        Img(
            src=src,
            alt=name,
            loading="lazy",
            decoding="async",
            cls="w-full h-full object-cover transition-all duration-300 group-hover:scale-105",
            **img_attrs,
        ),
        Div(cls="img-placeholder hidden absolute inset-0 bg-gray-100"),
        Div(
            P(name, cls="text-white text-sm truncate font-medium"),
            cls="absolute bottom-0 left-0 right-0 p-2 bg-gradient-to-t from-black/60 to-transparent "
                "opacity-0 group-hover:opacity-100 transition-opacity duration-200",
        ),
        cls="group relative aspect-square overflow-hidden rounded-lg bg-gray-100 cursor-pointer "
            "focus:ring-2 focus:ring-blue-500",
        tabindex="0",
        role="button",
        aria_label=f"View image {name}",
        **{
            "data-action": "open-image",
            "data-index": str(index),
            "data-arrowleft": str(grid_neighbor(index, "ArrowLeft", columns, total)),
            "data-arrowright": str(grid_neighbor(index, "ArrowRight", columns, total)),
            "data-arrowup": str(grid_neighbor(index, "ArrowUp", columns, total)),
            "data-arrowdown": str(grid_neighbor(index, "ArrowDown", columns, total)),
        },
    )


def load_more_sentinel(session: GallerySession):
    """Boundary sentinel below the virtual content; absent at end-of-collection."""
    collection = session.collection
    if not collection.has_more:
        return None

    if session.load_more_error is not None:
        body = Div(
            Span("Couldn't load more images.", cls="text-sm text-red-600 mr-3"),
            Button(
                "Retry",
                hx_post="/gallery/retry",
                hx_target="#gallery-grid",
                hx_swap="innerHTML",
                hx_vals="js:{...galleryViewport()}",
                cls="text-sm text-blue-600 underline",
                type="button",
            ),
            id="load-more-error",
            cls="flex items-center justify-center py-8",
        )
    elif session.is_loading:
        body = spinner("Loading more images...")
    else:
        body = Div(cls="h-8")

    return Div(
        body,
        id="gallery-sentinel",
        hx_post="/gallery/more",
        hx_trigger="intersect",
        hx_target="#gallery-grid",
        hx_swap="innerHTML",
        hx_vals='js:{visible: 1, ...galleryViewport()}',
    )


def grid_window(session: GallerySession, window: VirtualWindow) -> tuple:
    """Virtual content (fixed total height, absolutely positioned rows) plus sentinel."""
    items = session.collection.items
    total = len(items)
    rows = []
    for row in window.virtual_rows():
        cells = [
            image_cell(items[i], i, window.columns, total)
            for i in range(row.first_item, row.last_item)
        ]
        rows.append(Div(
            *cells,
            cls="grid gap-4 p-4",
            style=(
                f"position: absolute; top: 0; left: 0; width: 100%; "
                f"height: {row.size:g}px; transform: translateY({row.start:g}px); "
                f"grid-template-columns: repeat({window.columns}, minmax(0, 1fr));"
            ),
            **{"data-row": str(row.index)},
        ))

    content = Div(
        *rows,
        id="gallery-content",
        style=f"height: {window.total_height:g}px; width: 100%; position: relative;",
        **{"data-columns": str(window.columns), "data-total": str(total)},
    )
    sentinel = load_more_sentinel(session)
    return (content, sentinel) if sentinel is not None else (content,)


def banner_slot(session: GallerySession, oob: bool = False) -> Div:
    """
    Holder for the credential-expired banner.

    Grid partials only replace #gallery-grid, so they carry this slot as an
    out-of-band swap: a 403 during load-more still surfaces the banner.
    """
    attrs = {"hx_swap_oob": "true"} if oob else {}
    return Div(
        expired_banner(session) if session.banner else None,
        id="banner-slot",
        **attrs,
    )


def grid_partial(session: GallerySession, window: VirtualWindow) -> tuple:
    """Grid content for #gallery-grid plus the out-of-band banner slot."""
    return (*grid_window(session, window), banner_slot(session, oob=True))


def gallery_root(session: GallerySession) -> Div:
    """Everything below the header: banner, error view or virtualized grid."""
    banner = banner_slot(session)

    if session.phase == Phase.ERROR and session.initial_error is not None:
        body = error_view(session.initial_error)
    elif not session.collection.initial_loaded:
        body = spinner("Loading images...") if session.is_loading else None
    elif len(session.collection) == 0 and not session.collection.has_more:
        body = empty_view()
    else:
        window = session.update_viewport()
        body = Div(
            Div(*grid_window(session, window), id="gallery-grid"),
            id="gallery-scroll",
            cls="h-screen overflow-auto",
            hx_get="/gallery/grid",
            hx_trigger="load, scroll throttle:100ms, resize from:window throttle:200ms",
            hx_target="#gallery-grid",
            hx_swap="innerHTML",
            hx_vals="js:{...galleryViewport()}",
        )

    return Div(banner, body, id="gallery-root")


def lightbox_view(session: GallerySession) -> Div:
    """
    Fullscreen viewer for the open item.

    Zoom and pan are client state on #lightbox-image (data-zoom, data-pan-x,
    data-pan-y); every swap starts the new image at 100%.
    """
    navigator = session.navigator
    item = navigator.current
    name = display_name(item.key)
    size = format_file_size(item.byte_size)
    subtitle = navigator.position + (f" • {size}" if size else "")

    return Div(
        Div(cls="absolute inset-0", **{"data-action": "lightbox-close"}),
        Div(
            Div(
                H2(name, cls="text-lg font-medium truncate"),
                P(subtitle, cls="text-sm text-gray-300", id="lightbox-position"),
                cls="flex-1 min-w-0",
            ),
            A("Download", href=item.display_url, target="_blank", rel="noopener",
              cls="p-2 hover:bg-white/10 rounded-full text-sm"),
            Button("✕", title="Close (Esc)", type="button",
                   cls="p-2 hover:bg-white/10 rounded-full",
                   **{"data-action": "lightbox-close"}),
            cls="absolute top-0 left-0 right-0 p-4 flex items-center text-white z-10 "
                "bg-gradient-to-b from-black/50 to-transparent",
        ),
        Button("‹", id="lightbox-prev", type="button", aria_label="Previous image",
               cls="absolute left-4 top-1/2 -translate-y-1/2 p-3 bg-black/50 hover:bg-black/70 "
                   "rounded-full text-white text-2xl z-10",
               **{"data-action": "lightbox-prev", "data-has-prev": str(navigator.has_prev).lower()}),
        Button("›", id="lightbox-next", type="button", aria_label="Next image",
               cls="absolute right-4 top-1/2 -translate-y-1/2 p-3 bg-black/50 hover:bg-black/70 "
                   "rounded-full text-white text-2xl z-10",
               **{"data-action": "lightbox-next", "data-has-next": str(navigator.has_next).lower()}),
        Div(
            Div(id="lightbox-spinner",
                cls="absolute animate-spin rounded-full h-12 w-12 border-b-2 border-white"),
            Img(src=item.display_url, alt=name, id="lightbox-image", draggable="false",
                cls="max-w-full max-h-full object-contain opacity-0 transition-opacity select-none "
                    "pointer-events-auto",
                style="cursor: zoom-in;",
                **{"data-zoom": "1", "data-pan-x": "0", "data-pan-y": "0"}),
            id="lightbox-stage",
            cls="relative flex-1 h-full flex items-center justify-center p-16 overflow-hidden "
                "pointer-events-none",
        ),
        Div("100%", id="lightbox-zoom",
            cls="hidden absolute bottom-4 left-1/2 -translate-x-1/2 px-3 py-1 bg-black/50 "
                "text-white rounded-full text-sm z-10"),
        id="lightbox-content",
        cls="fixed inset-0 z-50 bg-black/90 flex items-center justify-center",
        **{"data-index": str(navigator.open_index), "data-key": ensure_utf8_display(item.key)},
    )


def not_found_partial(message: str) -> Response:
    return Response(message, status_code=404, media_type="text/plain")


# =============================================================================
# ROUTES - GALLERY FRONT END
# =============================================================================


@rt("/")
async def get(sess):
    """Gallery page. Runs the initial load on first visit."""
    session = get_session(sess)
    await session.load_initial()

    return (
        Title("Cloud Gallery"),
        Main(
            Header(
                H1("Gallery", cls="text-2xl font-bold"),
                Button(
                    "Reload",
                    hx_post="/gallery/reload",
                    hx_target="#gallery-root",
                    hx_swap="outerHTML",
                    cls="text-sm text-blue-600 hover:underline",
                    type="button",
                ),
                cls="flex items-center justify-between px-4 py-3 border-b",
            ),
            gallery_root(session),
            Div(id="lightbox"),
            cls="min-h-screen bg-white",
        ),
    )


@rt("/gallery/grid")
async def get(sess, width: float = None, scroll: float = None, height: float = None):
    """
    Virtualized grid for the reported viewport.

    Viewport geometry also feeds the load-more trigger: being within
    LOAD_MORE_MARGIN of the end counts as the sentinel being visible.
    """
    session = get_session(sess)
    window = session.update_viewport(width, scroll, height)

    if height:
        near_end = (scroll or 0) + height >= window.total_height - LOAD_MORE_MARGIN
        if await session.on_sentinel(near_end):
            window = session.update_viewport()

    return grid_partial(session, window)


@rt("/gallery/more")
async def post(sess, visible: int = 1, width: float = None, scroll: float = None, height: float = None):
    """Boundary sentinel visibility report."""
    session = get_session(sess)
    session.update_viewport(width, scroll, height)
    await session.on_sentinel(bool(visible))
    return grid_partial(session, session.update_viewport())


@rt("/gallery/retry")
async def post(sess, width: float = None, scroll: float = None, height: float = None, request=None):
    """User-initiated retry. Answers with the grid when called from the load-more indicator."""
    session = get_session(sess)
    await session.retry()
    if request is not None and request.headers.get("HX-Target") == "gallery-grid":
        return grid_partial(session, session.update_viewport(width, scroll, height))
    return gallery_root(session)


@rt("/gallery/reload")
async def post(sess):
    """Full reset and reload from the first page."""
    session = get_session(sess)
    await session.reload()
    return gallery_root(session)


@rt("/gallery/refresh-token")
async def post(sess):
    """Credential refresh from the expired banner; resumes the failed fetch on success."""
    session = get_session(sess)
    await session.refresh_credentials()
    return gallery_root(session)


@rt("/gallery/view/next")
def post(sess):
    session = get_session(sess)
    try:
        session.navigator.next()
    except IndexError as e:
        return not_found_partial(str(e))
    return lightbox_view(session)


@rt("/gallery/view/prev")
def post(sess):
    session = get_session(sess)
    try:
        session.navigator.prev()
    except IndexError as e:
        return not_found_partial(str(e))
    return lightbox_view(session)


@rt("/gallery/view/close")
def post(sess):
    session = get_session(sess)
    session.navigator.close()
    return ""


# Registered after next/prev/close so those literal paths match first
@rt("/gallery/view/{index}")
def get(index: int, sess):
    """Open the lightbox at a flat collection index."""
    session = get_session(sess)
    try:
        session.navigator.open(index)
    except IndexError as e:
        return not_found_partial(str(e))
    return lightbox_view(session)


if __name__ == "__main__":
    try:
        configure_from_env()
    except ConfigError as e:
        print(f"Error: {e}")
        print("Set GALLERY_ACCOUNT_URL, GALLERY_CONTAINER, GALLERY_ACCESS_KEY_ID, "
              "GALLERY_SECRET_ACCESS_KEY and GALLERY_REFRESH_URL.")
        sys.exit(1)

    print("=" * 60)
    print(f"Server starting at http://{HOST}:{PORT}")
    print("=" * 60)

    serve(host=HOST, port=PORT, reload=DEBUG)
