"""Dockerfile generation for repositories that ship without one.

Each supported framework has a Jinja2 template. ``FrameworkType.OTHER`` has
none: such repositories must provide their own Dockerfile.
"""

from datetime import datetime, timezone

from jinja2 import Template

from deployotron.config.defaults import get_framework_port
from deployotron.lib.errors import BuildError
from deployotron.models.project import FrameworkType

_HEADER = """\
# Auto-generated by Deployotron for {{ project_name }}
# Generated at: {{ created }}
"""

_LABELS = """\
LABEL org.opencontainers.image.title="{{ project_name }}"
LABEL org.opencontainers.image.created="{{ created }}"
{% if source_sha %}LABEL org.opencontainers.image.revision="{{ source_sha }}"
{% endif %}LABEL dev.deployotron.managed="true"
"""

NEXTJS_TEMPLATE = _HEADER + """
FROM node:18-alpine
""" + _LABELS + """
WORKDIR /app
COPY package*.json ./
RUN npm ci
COPY . .
RUN npm run build
ENV PORT="{{ port }}"
EXPOSE {{ port }}
CMD ["npm", "start"]
"""

REACT_TEMPLATE = _HEADER + """
FROM node:18-alpine
""" + _LABELS + """
WORKDIR /app
COPY package*.json ./
RUN npm ci
COPY . .
RUN npm run build
RUN npm install -g serve
EXPOSE {{ port }}
CMD ["serve", "-s", "{{ build_dir }}", "-l", "{{ port }}"]
"""

NODE_TEMPLATE = _HEADER + """
FROM node:18-alpine
""" + _LABELS + """
WORKDIR /app
COPY package*.json ./
RUN npm ci --only=production
COPY . .
ENV PORT="{{ port }}"
EXPOSE {{ port }}
CMD ["node", "index.js"]
"""

PYTHON_TEMPLATE = _HEADER + """
FROM python:3.11-slim
""" + _LABELS + """
WORKDIR /app
COPY . .
RUN if [ -f requirements.txt ]; then pip install --no-cache-dir -r requirements.txt; \\
    else pip install --no-cache-dir .; fi
ENV PORT="{{ port }}"
EXPOSE {{ port }}
CMD ["python", "main.py"]
"""

RUBY_TEMPLATE = _HEADER + """
FROM ruby:3.2-slim
""" + _LABELS + """
WORKDIR /app
COPY Gemfile* ./
RUN bundle install
COPY . .
ENV PORT="{{ port }}"
EXPOSE {{ port }}
CMD ["bundle", "exec", "rackup", "--host", "0.0.0.0", "--port", "{{ port }}"]
"""

GO_TEMPLATE = _HEADER + """
FROM golang:1.22-alpine AS build
WORKDIR /src
COPY . .
RUN go build -o /out/app .

FROM alpine:3.19
""" + _LABELS + """
COPY --from=build /out/app /app
ENV PORT="{{ port }}"
EXPOSE {{ port }}
CMD ["/app"]
"""

RUST_TEMPLATE = _HEADER + """
FROM rust:1.77-slim AS build
WORKDIR /src
COPY . .
RUN cargo build --release && \\
    cp "$(find target/release -maxdepth 1 -type f -perm -u+x | head -n 1)" /app

FROM debian:bookworm-slim
""" + _LABELS + """
COPY --from=build /app /app
ENV PORT="{{ port }}"
EXPOSE {{ port }}
CMD ["/app"]
"""

DOCKERFILE_TEMPLATES: dict[FrameworkType, str] = {
    FrameworkType.NEXTJS: NEXTJS_TEMPLATE,
    FrameworkType.REACT: REACT_TEMPLATE,
    FrameworkType.VUE: REACT_TEMPLATE,
    FrameworkType.ANGULAR: REACT_TEMPLATE,
    FrameworkType.NODE: NODE_TEMPLATE,
    FrameworkType.PYTHON: PYTHON_TEMPLATE,
    FrameworkType.RUBY: RUBY_TEMPLATE,
    FrameworkType.GO: GO_TEMPLATE,
    FrameworkType.RUST: RUST_TEMPLATE,
}

# Static build output directory served for single-page apps
_BUILD_DIRS = {
    FrameworkType.REACT: "build",
    FrameworkType.VUE: "dist",
    FrameworkType.ANGULAR: "dist",
}


def generate_dockerfile(
    framework: FrameworkType,
    project_name: str,
    *,
    source_sha: str | None = None,
) -> str:
    """Render the Dockerfile for a framework.

    Args:
        framework: Framework of the source tree
        project_name: Project name for labels
        source_sha: Optional commit SHA for the revision label

    Returns:
        Dockerfile content

    Raises:
        BuildError: If the framework has no template
    """
    template_text = DOCKERFILE_TEMPLATES.get(framework)
    if template_text is None:
        raise BuildError(
            f"No Dockerfile template for framework '{framework.value}'; "
            "add a Dockerfile to the repository",
            output=[f"unsupported framework: {framework.value}"],
        )

    return Template(template_text).render(
        project_name=project_name,
        created=datetime.now(timezone.utc).isoformat(),
        source_sha=source_sha,
        port=get_framework_port(framework.value),
        build_dir=_BUILD_DIRS.get(framework, "build"),
    )
