# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
HAL (Hypertext Application Language) response formatting utilities.
Builds application resources with permission-dependent affordance links and
RFC 7807 problem responses.
"""

from typing import Dict, List, Any, Optional, Iterable
from urllib.parse import urljoin, urlencode
import math

from models.responses import HalLink
from models.enums import ApplicationStatus, Permission
from domain.applications import NOMINAL_TRANSITIONS

PROBLEM_BASE_URI = "https://permits.dipolog.gov.ph/problems/"


class HalLinkBuilder:
    """Builder for HAL links with proper URL construction."""

    def __init__(self, base_url: str):
        self.base_url = base_url.rstrip('/') + '/'

    def build_link(
        self,
        path: str,
        method: str = "GET",
        title: Optional[str] = None
    ) -> HalLink:
        """Build a HAL link with proper URL construction."""
        href = urljoin(self.base_url, path.lstrip('/'))
        return HalLink(href=href, method=method, title=title)

    def build_self_link(self, resource_path: str) -> HalLink:
        """Build self link for a resource."""
        return self.build_link(resource_path, title="Self")

    def build_collection_link(self, collection_path: str) -> HalLink:
        """Build link to parent collection."""
        return self.build_link(collection_path, title="Collection")


class PaginationLinkBuilder:
    """Builder for pagination links in HAL collections."""

    def __init__(self, base_url: str):
        self.link_builder = HalLinkBuilder(base_url)

    def _page_link(self, base_path: str, params: Dict[str, Any], page: int,
                   page_size: int, title: str) -> HalLink:
        query = urlencode({**params, 'page': page, 'page_size': page_size})
        return self.link_builder.build_link(f"{base_path}?{query}", title=title)

    def build_pagination_links(
        self,
        base_path: str,
        current_page: int,
        total_pages: int,
        page_size: int,
        query_params: Optional[Dict[str, Any]] = None
    ) -> Dict[str, HalLink]:
        """Build pagination links for a collection."""
        params = {k: v for k, v in (query_params or {}).items() if v not in (None, "")}
        links = {'self': self._page_link(base_path, params, current_page, page_size, "Current page")}

        if current_page > 1:
            links['first'] = self._page_link(base_path, params, 1, page_size, "First page")
            links['prev'] = self._page_link(base_path, params, current_page - 1, page_size, "Previous page")

        if current_page < total_pages:
            links['next'] = self._page_link(base_path, params, current_page + 1, page_size, "Next page")
            links['last'] = self._page_link(base_path, params, total_pages, page_size, "Last page")

        return links


class AffordanceLinkBuilder:
    """Builder for conditional affordance links based on permissions and state."""

    def __init__(self, base_url: str):
        self.link_builder = HalLinkBuilder(base_url)

    def build_application_affordances(
        self,
        application_id: str,
        application_status: str,
        user_permissions: Iterable[str]
    ) -> Dict[str, HalLink]:
        """Build conditional affordance links for an application."""
        permissions = set(user_permissions)
        base_path = f"/api/applications/{application_id}"

        links = {
            'self': self.link_builder.build_self_link(base_path),
            'documents': self.link_builder.build_link(f"{base_path}/documents", title="Documents"),
        }

        if Permission.VIEW_ALL_APPLICATIONS.value in permissions:
            links['collection'] = self.link_builder.build_collection_link("/api/admin/applications")

        if Permission.EDIT_ALL_APPLICATIONS.value in permissions:
            # Only the nominal next steps are advertised; the status route
            # itself accepts any valid status.
            for target in NOMINAL_TRANSITIONS.get(application_status, []):
                links[f"set-{target.replace('_', '-')}"] = self.link_builder.build_link(
                    f"{base_path}/status",
                    method="PATCH",
                    title=f"Move to {target.replace('_', ' ')}"
                )

        if application_status == ApplicationStatus.SUBMITTED.value:
            links['checkout'] = self.link_builder.build_link(
                "/api/payments/checkout", method="POST", title="Pay permit fee"
            )

        if Permission.DELETE_ALL_APPLICATIONS.value in permissions:
            links['delete'] = self.link_builder.build_link(
                f"/api/admin/applications/{application_id}",
                method="DELETE",
                title="Delete application"
            )

        return links


class HalResponseBuilder:
    """Main HAL response builder."""

    def __init__(self, base_url: str):
        self.base_url = base_url.rstrip('/')
        self.link_builder = HalLinkBuilder(base_url)
        self.pagination_builder = PaginationLinkBuilder(base_url)
        self.affordance_builder = AffordanceLinkBuilder(base_url)

    def build_resource_response(
        self,
        data: Dict[str, Any],
        resource_type: str,
        resource_id: str,
        user_permissions: Iterable[str]
    ) -> Dict[str, Any]:
        """Build a HAL resource response with appropriate affordance links."""
        response = dict(data)

        if resource_type == "application":
            links = self.affordance_builder.build_application_affordances(
                resource_id,
                data.get('status', ''),
                user_permissions
            )
        else:
            links = {
                'self': self.link_builder.build_self_link(f"/api/{resource_type}s/{resource_id}")
            }

        response['_links'] = {rel: link.model_dump(exclude_none=True) for rel, link in links.items()}
        return response

    def build_collection_response(
        self,
        items: List[Dict[str, Any]],
        total: int,
        page: int,
        page_size: int,
        collection_path: str,
        query_params: Optional[Dict[str, Any]] = None
    ) -> Dict[str, Any]:
        """Build a HAL collection response with pagination links."""
        total_pages = math.ceil(total / page_size) if page_size > 0 else 1

        pagination_links = self.pagination_builder.build_pagination_links(
            collection_path,
            page,
            total_pages,
            page_size,
            query_params
        )

        return {
            'total': total,
            'page': page,
            'page_size': page_size,
            'total_pages': total_pages,
            '_links': {rel: link.model_dump(exclude_none=True) for rel, link in pagination_links.items()},
            '_embedded': {
                'items': items
            }
        }

    def build_error_response(
        self,
        error_type: str,
        title: str,
        status: int,
        detail: str,
        instance: str,
        validation_errors: Optional[List[Dict[str, Any]]] = None
    ) -> Dict[str, Any]:
        """Build RFC 7807 compliant error response with HAL links."""
        error_response = {
            'type': f"{PROBLEM_BASE_URI}{error_type}",
            'title': title,
            'status': status,
            'detail': detail,
            'instance': instance
        }

        if validation_errors:
            error_response['errors'] = validation_errors

        links = {
            'help': self.link_builder.build_link(f"/docs/errors#{error_type}", title="Error documentation")
        }

        if error_type == "validation-error":
            links['schema'] = self.link_builder.build_link("/openapi/openapi.json", title="API schema")
        elif error_type == "insufficient-permissions":
            links['permissions'] = self.link_builder.build_link("/api/auth/me", title="User permissions")

        error_response['_links'] = {rel: link.model_dump(exclude_none=True) for rel, link in links.items()}
        return error_response


class HalFormatter:
    """High-level HAL formatter with convenience methods."""

    def __init__(self, base_url: str):
        self.builder = HalResponseBuilder(base_url)

    def format_application(
        self,
        application: Dict[str, Any],
        user_permissions: Iterable[str]
    ) -> Dict[str, Any]:
        """Format an application with HAL links."""
        return self.builder.build_resource_response(
            application,
            "application",
            application['id'],
            user_permissions
        )

    def format_application_collection(
        self,
        applications: List[Dict[str, Any]],
        total: int,
        page: int,
        page_size: int,
        user_permissions: Iterable[str],
        filters: Optional[Dict[str, Any]] = None
    ) -> Dict[str, Any]:
        """Format a page of applications with HAL links."""
        user_permissions = list(user_permissions)
        formatted = [self.format_application(app, user_permissions) for app in applications]
        return self.builder.build_collection_response(
            formatted,
            total,
            page,
            page_size,
            "/api/admin/applications",
            filters
        )

    def format_validation_error(
        self,
        detail: str,
        instance: str,
        validation_errors: Optional[List[Dict[str, Any]]] = None
    ) -> Dict[str, Any]:
        """Format a validation error response."""
        return self.builder.build_error_response(
            "validation-error",
            "Validation Error",
            422,
            detail,
            instance,
            validation_errors
        )

    def format_authentication_error(self, detail: str, instance: str) -> Dict[str, Any]:
        """Format an authentication error response."""
        return self.builder.build_error_response(
            "authentication-required",
            "Authentication Required",
            401,
            detail,
            instance
        )

    def format_authorization_error(self, detail: str, instance: str) -> Dict[str, Any]:
        """Format an authorization error response."""
        return self.builder.build_error_response(
            "insufficient-permissions",
            "Insufficient Permissions",
            403,
            detail,
            instance
        )

    def format_not_found_error(self, detail: str, instance: str) -> Dict[str, Any]:
        return self.builder.build_error_response(
            "resource-not-found",
            "Resource Not Found",
            404,
            detail,
            instance
        )

    def format_conflict_error(self, detail: str, instance: str) -> Dict[str, Any]:
        return self.builder.build_error_response(
            "resource-conflict",
            "Resource Conflict",
            409,
            detail,
            instance
        )

    def format_service_unavailable_error(self, detail: str, instance: str) -> Dict[str, Any]:
        return self.builder.build_error_response(
            "service-unavailable",
            "Service Unavailable",
            503,
            detail,
            instance
        )

    def format_server_error(self, detail: str, instance: str) -> Dict[str, Any]:
        """Format a server error response."""
        return self.builder.build_error_response(
            "internal-server-error",
            "Internal Server Error",
            500,
            detail,
            instance
        )


# Convenience function for creating HAL formatter
def create_hal_formatter(base_url: str) -> HalFormatter:
    """Create a HAL formatter instance."""
    return HalFormatter(base_url)
