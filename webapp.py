from __future__ import annotations

import logging
import os
from contextlib import asynccontextmanager
from urllib.parse import quote

from fastapi import FastAPI, Form, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import HTMLResponse, RedirectResponse
from fastapi.staticfiles import StaticFiles
from fastapi.templating import Jinja2Templates
from starlette.concurrency import run_in_threadpool
from dotenv import load_dotenv

from hub import api_contributions, api_health, api_search, api_templates
from templatedb.config import get_settings
from templatedb.contributions import create_contribution
from templatedb.db.postgres import run_migrations
from templatedb.errors import AppError, availability_issue, to_error_payload
from templatedb.fallback import FEATURED_FALLBACK, fallback_detail
from templatedb.forms import (
	DRAFT_STORAGE_KEY,
	PROFILE_STORAGE_KEY,
	build_form_request,
	prefill_from_query,
	remix_href,
	validate_form_request,
)
from templatedb.highlight import detect_language, highlight_to_html, lint_hints
from templatedb.search import read_sort_mode, read_type_filter, sanitize_query, search_templates
from templatedb.templates import (
	TEMPLATE_TYPES,
	create_template,
	fork_template,
	get_template,
	list_templates,
	normalize_create_payload,
)
from templatedb.version import app_version_label


# Load local environment variables for development parity
load_dotenv(override=False)

logging.basicConfig(
	level=os.getenv("LOG_LEVEL", "INFO").upper(),
	format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger("templatedb.web")

BASE_DIR = os.path.dirname(os.path.abspath(__file__))


@asynccontextmanager
async def lifespan(_app: FastAPI):
	settings = get_settings()
	# run_server.py migrates before starting uvicorn; this covers a bare `uvicorn webapp:app`
	if settings.db_auto_migrate:
		try:
			applied = await run_in_threadpool(run_migrations, settings.migrations_dir)
			logger.info("Auto-migrate applied: %s", applied or "nothing")
		except Exception as e:
			logger.error("Auto-migrate failed, serving in fallback mode: %s", e, exc_info=e)
	yield


app = FastAPI(title="TemplateDatabase", lifespan=lifespan)
templates = Jinja2Templates(directory=os.path.join(BASE_DIR, "templates"))
templates.env.globals.update(
	version_label=app_version_label(),
	draft_key=DRAFT_STORAGE_KEY,
	profile_key=PROFILE_STORAGE_KEY,
	template_types=TEMPLATE_TYPES,
)
app.mount("/static", StaticFiles(directory=os.path.join(BASE_DIR, "static")), name="static")

# CORS for external frontends
_cors_env = get_settings().cors_origins
if _cors_env == "*":
	origins = ["*"]
else:
	origins = [o.strip() for o in _cors_env.split(",") if o.strip()]
app.add_middleware(
	CORSMiddleware,
	allow_origins=origins,
	allow_credentials=origins != ["*"],
	allow_methods=["*"],
	allow_headers=["*"],
)

app.include_router(api_templates.router)
app.include_router(api_search.router)
app.include_router(api_contributions.router)
app.include_router(api_health.router)


def _featured_for_homepage() -> tuple[list[dict], str]:
	try:
		return list_templates(featured_only=True), ""
	except Exception as e:
		if availability_issue(e):
			logger.warning("Homepage serving featured fallback: %s", availability_issue(e))
			return FEATURED_FALLBACK, ""
		return [], to_error_payload(e)[1]


@app.get("/", response_class=HTMLResponse)
def index(request: Request, q: str = "", type: str = "", sort: str = ""):
	query = sanitize_query(q)
	results: list[dict] = []
	search_error = ""
	if query:
		try:
			results = search_templates(query, sort, type)
		except Exception as e:
			search_error = to_error_payload(e)[1]
	featured, featured_error = _featured_for_homepage()
	return templates.TemplateResponse(
		request,
		"index.html",
		{
			"q": query,
			"type_filter": read_type_filter(type) or "",
			"sort": read_sort_mode(sort),
			"results": results,
			"search_error": search_error,
			"featured": featured,
			"featured_error": featured_error,
		},
	)


@app.get("/template/{slug}", response_class=HTMLResponse)
def template_detail(request: Request, slug: str, info: str = ""):
	try:
		template = get_template(slug)
	except Exception as e:
		template = fallback_detail(slug) if availability_issue(e) else None
		if template is None:
			status, message = to_error_payload(e)
			return templates.TemplateResponse(
				request,
				"template.html",
				{"template": None, "info": message},
				status_code=status,
			)
	language = detect_language(template["content"])
	return templates.TemplateResponse(
		request,
		"template.html",
		{
			"template": template,
			"info": info,
			"language": language,
			"hints": lint_hints(template["content"], language),
			"highlighted": highlight_to_html(template["content"], language),
			"remix_href": remix_href(template),
		},
	)


def _redirect_with_info(slug: str, info: str) -> RedirectResponse:
	return RedirectResponse(f"/template/{quote(slug)}?info={quote(info)}", status_code=303)


@app.post("/template/{slug}/fork")
async def template_fork(slug: str, ownerRef: str = Form("")):
	if not ownerRef.strip():
		return _redirect_with_info(slug, "Fill in your username before forking.")
	try:
		forked = await run_in_threadpool(fork_template, slug, ownerRef)
	except Exception as e:
		logger.warning("Fork of %s failed: %s", slug, to_error_payload(e)[1])
		return _redirect_with_info(slug, to_error_payload(e)[1])
	return _redirect_with_info(forked["slug"], "Fork created.")


@app.post("/template/{slug}/contribute")
async def template_contribute(slug: str, contributorRef: str = Form(""), message: str = Form("")):
	body = {
		"templateRef": slug,
		"contributorRef": contributorRef,
		"message": message.strip() or f"Contribution request for {slug}",
	}
	try:
		await run_in_threadpool(create_contribution, body)
	except Exception as e:
		logger.warning("Contribution to %s failed: %s", slug, to_error_payload(e)[1])
		return _redirect_with_info(slug, to_error_payload(e)[1])
	return _redirect_with_info(slug, "Contribution request sent.")


def _render_contribute(request: Request, values: dict, error: str = "", status_code: int = 200):
	content = values.get("content") or ""
	language = detect_language(content) if content else ""
	return templates.TemplateResponse(
		request,
		"contribute.html",
		{
			"values": values,
			"error": error,
			"language": language,
			"hints": lint_hints(content, language) if content else [],
			"preview": highlight_to_html(content, language) if content else "",
		},
		status_code=status_code,
	)


@app.get("/contribute", response_class=HTMLResponse)
def contribute_page(request: Request):
	return _render_contribute(request, prefill_from_query(request.query_params))


@app.post("/contribute", response_class=HTMLResponse)
async def contribute_submit(request: Request):
	form = await request.form()
	values = {k: str(v) for k, v in form.items()}
	body = build_form_request(values, values.get("ownerRef", ""))
	error = validate_form_request(body)
	if error:
		return _render_contribute(request, values, error, status_code=400)
	try:
		created = await run_in_threadpool(create_template, normalize_create_payload(body))
	except Exception as e:
		status, message = to_error_payload(e)
		logger.warning("Contribute form failed: %s", message)
		return _render_contribute(request, values, message, status_code=status)
	return RedirectResponse(f"/template/{quote(created['slug'])}?info={quote('Template published.')}", status_code=303)


@app.exception_handler(AppError)
async def app_error_page(request: Request, exc: AppError):
	return templates.TemplateResponse(request, "error.html", {"message": exc.message}, status_code=exc.status)


@app.exception_handler(Exception)
async def unhandled_error_page(request: Request, exc: Exception):
	logger.error("Unhandled error on %s", request.url.path, exc_info=exc)
	return templates.TemplateResponse(request, "error.html", {"message": str(exc) or "Unknown internal error"}, status_code=500)
