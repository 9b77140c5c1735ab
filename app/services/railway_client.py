"""
Railway GraphQL Client

Reads deploy-service configuration: which variables are set and which
domains the service is reachable on. Read-only.
"""

import logging
from typing import Optional, List, Dict, Any
from pydantic import BaseModel

from app.config import get_settings
from app.errors import ConfigurationMissing
from app.services.http import HttpClientFactory, get_http_factory

logger = logging.getLogger(__name__)


SERVICE_QUERY = """
query service($id: String!) {
  service(id: $id) {
    id
    name
    projectId
    serviceInstances {
      edges {
        node {
          environmentId
          domains {
            serviceDomains { domain }
            customDomains { domain }
          }
        }
      }
    }
  }
}
"""

VARIABLES_QUERY = """
query variables($projectId: String!, $environmentId: String!, $serviceId: String!) {
  variables(projectId: $projectId, environmentId: $environmentId, serviceId: $serviceId)
}
"""


class RailwayError(Exception):
    """Raised when the Railway API returns GraphQL errors."""
    pass


class DeployServiceInfo(BaseModel):
    """What the deploy platform knows about a service."""
    service_id: str
    name: Optional[str] = None
    variable_names: List[str] = []
    domains: List[str] = []


class RailwayClient:
    """Railway public API access."""

    def __init__(self, token: Optional[str] = None, http: Optional[HttpClientFactory] = None, api_url: Optional[str] = None):
        settings = get_settings()
        self.token = token if token is not None else settings.RAILWAY_API_TOKEN
        self.http = http or get_http_factory()
        self.api_url = api_url or settings.RAILWAY_API_URL

    async def _query(self, query: str, variables: Dict[str, Any]) -> Dict[str, Any]:
        if not self.token:
            raise ConfigurationMissing("RAILWAY_API_TOKEN is not configured")

        async with self.http.client(headers={"Authorization": f"Bearer {self.token}"}) as client:
            response = await client.post(self.api_url, json={"query": query, "variables": variables})

        response.raise_for_status()
        body = response.json()

        if body.get("errors"):
            messages = "; ".join(err.get("message", "unknown error") for err in body["errors"])
            raise RailwayError(f"Railway API error: {messages}")

        return body.get("data") or {}

    async def get_service_info(self, service_id: str) -> Optional[DeployServiceInfo]:
        """
        Fetch variable names and domains for a service.

        Returns:
            DeployServiceInfo, or None if the service does not exist
        """
        data = await self._query(SERVICE_QUERY, {"id": service_id})
        service = data.get("service")
        if not service:
            return None

        domains: List[str] = []
        variable_names: List[str] = []

        for edge in (service.get("serviceInstances") or {}).get("edges", []):
            node = edge.get("node") or {}
            node_domains = node.get("domains") or {}
            for kind in ("serviceDomains", "customDomains"):
                domains.extend(d["domain"] for d in node_domains.get(kind) or [] if d.get("domain"))

            environment_id = node.get("environmentId")
            if environment_id and not variable_names:
                variables = await self._query(VARIABLES_QUERY, {
                    "projectId": service.get("projectId"),
                    "environmentId": environment_id,
                    "serviceId": service_id,
                })
                # Only names are kept; values are secrets
                variable_names = sorted((variables.get("variables") or {}).keys())

        return DeployServiceInfo(
            service_id=service_id,
            name=service.get("name"),
            variable_names=variable_names,
            domains=domains,
        )
