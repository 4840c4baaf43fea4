"""Rendering of the nginx site and the systemd unit for the service."""

from pathlib import Path
from typing import Optional

NGINX_SITE_TEMPLATE = """\
# Managed by crm-deploy
upstream crm_app {{
    server 127.0.0.1:{upstream_port};
    keepalive 16;
}}

server {{
    listen 80;
    listen [::]:80;
    server_name {server_name};

    client_max_body_size {client_max_body_size};

    # Security headers
    add_header X-Frame-Options "SAMEORIGIN" always;
    add_header X-Content-Type-Options "nosniff" always;
    add_header X-XSS-Protection "1; mode=block" always;
    add_header Referrer-Policy "strict-origin-when-cross-origin" always;

    # Gzip compression
    gzip on;
    gzip_vary on;
    gzip_min_length 1024;
    gzip_types text/plain text/css application/json application/javascript text/xml application/xml application/xml+rss text/javascript;

    location / {{
        proxy_pass http://crm_app;
        proxy_http_version 1.1;
        proxy_set_header Upgrade $http_upgrade;
        proxy_set_header Connection 'upgrade';
        proxy_set_header Host $host;
        proxy_set_header X-Real-IP $remote_addr;
        proxy_set_header X-Forwarded-For $proxy_add_x_forwarded_for;
        proxy_set_header X-Forwarded-Proto $scheme;
        proxy_cache_bypass $http_upgrade;
    }}

    location /health {{
        access_log off;
        proxy_pass http://crm_app/health;
    }}

    location ~* \\.(js|css|png|jpg|jpeg|gif|ico|svg|woff2?)$ {{
        proxy_pass http://crm_app;
        expires 1y;
        add_header Cache-Control "public, immutable";
    }}
}}
"""

SYSTEMD_UNIT_TEMPLATE = """\
# Managed by crm-deploy
[Unit]
Description={description}
After=network.target postgresql.service redis-server.service
Wants=postgresql.service redis-server.service

[Service]
Type=simple
{identity}WorkingDirectory={working_directory}
EnvironmentFile={env_file}
ExecStart={exec_start}
Restart=always
RestartSec=5
KillSignal=SIGTERM
TimeoutStopSec=30
NoNewPrivileges=true

[Install]
WantedBy=multi-user.target
"""


def _nginx_size(max_bytes: int) -> str:
    mb = max(1, -(-max_bytes // (1024 * 1024)))
    return f"{mb}m"


def render_nginx_site(
    server_name: str = "_",
    upstream_port: int = 3000,
    client_max_body_size: int = 10 * 1024 * 1024,
) -> str:
    """
    Render the reverse-proxy server block.

    Args:
        server_name: nginx ``server_name`` value
        upstream_port: Port the service listens on
        client_max_body_size: Maximum request body in bytes (rounded up to MB)
    """
    return NGINX_SITE_TEMPLATE.format(
        server_name=server_name,
        upstream_port=upstream_port,
        client_max_body_size=_nginx_size(client_max_body_size),
    )


def render_systemd_unit(
    exec_start: str,
    working_directory: Path,
    env_file: Path,
    user: Optional[str] = None,
    group: Optional[str] = None,
    description: str = "Real Estate CRM service",
) -> str:
    """Render the systemd unit that runs the service process."""
    identity = ""
    if user:
        identity += f"User={user}\n"
    if group:
        identity += f"Group={group}\n"

    return SYSTEMD_UNIT_TEMPLATE.format(
        description=description,
        identity=identity,
        working_directory=working_directory,
        env_file=env_file,
        exec_start=exec_start,
    )
