"""Tests for the template rendering engine."""
from __future__ import annotations

from pathlib import Path

import pytest

from devsitectl.templates import TemplateEngine, TemplateRenderError


def _site_context() -> dict[str, object]:
    return {
        "server_name": "blog-app.local",
        "http_listen_port": 80,
        "https_listen_port": 443,
        "document_root": "/var/www/blog-app/public",
        "fastcgi_socket": "/run/php/php8.3-fpm.sock",
        "access_log": "/var/log/nginx/blog-app.local.access.log",
        "error_log": "/var/log/nginx/blog-app.local.error.log",
        "tls": {
            "certificate": "/etc/nginx/ssl/blog-app.local.pem",
            "certificate_key": "/etc/nginx/ssl/blog-app.local-key.pem",
        },
    }


def test_render_to_string_uses_builtin_templates() -> None:
    """Built-in templates render with strict variables."""
    engine = TemplateEngine.with_overrides(None)

    output = engine.render_to_string("nginx/site.conf.j2", _site_context())

    assert "server_name blog-app.local;" in output
    assert "root /var/www/blog-app/public;" in output
    assert "fastcgi_pass unix:/run/php/php8.3-fpm.sock;" in output
    assert "ssl_certificate /etc/nginx/ssl/blog-app.local.pem;" in output
    assert "ssl_certificate_key /etc/nginx/ssl/blog-app.local-key.pem;" in output
    assert "listen 443 ssl;" in output
    assert "try_files $uri $uri/ /index.php?$query_string;" in output
    assert output.endswith("}\n")


def test_missing_variable_raises() -> None:
    engine = TemplateEngine.with_overrides(None)
    context = _site_context()
    del context["document_root"]

    with pytest.raises(TemplateRenderError, match="nginx/site.conf.j2"):
        engine.render_to_string("nginx/site.conf.j2", context)


def test_override_directory_shadows_builtin(tmp_path: Path) -> None:
    override = tmp_path / "templates" / "nginx"
    override.mkdir(parents=True)
    (override / "site.conf.j2").write_text("# custom {{ server_name }}\n")

    engine = TemplateEngine.with_overrides(tmp_path / "templates")

    assert engine.render_to_string("nginx/site.conf.j2", _site_context()) == (
        "# custom blog-app.local\n"
    )


def test_missing_override_directory_falls_back(tmp_path: Path) -> None:
    engine = TemplateEngine.with_overrides(tmp_path / "does-not-exist")

    output = engine.render_to_string("nginx/site.conf.j2", _site_context())

    assert "server_name blog-app.local;" in output


def test_unknown_template_raises() -> None:
    engine = TemplateEngine.with_overrides(None)

    with pytest.raises(TemplateRenderError):
        engine.render_to_string("apache/site.conf.j2", {})
