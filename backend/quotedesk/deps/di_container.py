"""
Dependency injection container using dependency-injector.
Wires the clock, external collaborators and controllers. Controllers are
factories that receive the request's database session at call time.
"""

from dependency_injector import containers, providers

from quotedesk.core.clock import SystemClock
from quotedesk.core.integrations.email import HttpEmailNotifier
from quotedesk.core.integrations.renderer import HttpDocumentRenderer
from quotedesk.services.health_service import HealthService
from quotedesk.controllers.health_controller import HealthController
from quotedesk.controllers.quotation_controller import QuotationController
from quotedesk.controllers.discount_approval_controller import DiscountApprovalController
from quotedesk.controllers.client_portal_controller import ClientPortalController


class Container(containers.DeclarativeContainer):
    """Dependency injection container."""

    config = providers.Configuration()

    # Collaborators; tests override these with fakes
    clock = providers.Singleton(SystemClock)
    notifier = providers.Singleton(HttpEmailNotifier)
    renderer = providers.Singleton(HttpDocumentRenderer)

    # Services
    health_service = providers.Singleton(
        HealthService,
    )

    # Controllers
    health_controller = providers.Factory(
        HealthController,
        health_service=health_service,
    )

    quotation_controller = providers.Factory(
        QuotationController,
        notifier=notifier,
        renderer=renderer,
        clock=clock,
    )

    discount_approval_controller = providers.Factory(
        DiscountApprovalController,
        notifier=notifier,
        clock=clock,
    )

    client_portal_controller = providers.Factory(
        ClientPortalController,
        notifier=notifier,
        renderer=renderer,
        clock=clock,
    )


# Global container instance
_container: Container = None


def get_container() -> Container:
    """Get the global dependency injection container."""
    global _container
    if _container is None:
        _container = Container()
    return _container


async def shutdown_container() -> None:
    """Close HTTP sessions held by initialized collaborators."""
    if _container is None:
        return
    for provider in (_container.notifier, _container.renderer):
        if provider.overridden:
            continue
        instance = provider()
        close = getattr(instance, "close", None)
        if close is not None:
            await close()
