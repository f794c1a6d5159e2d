from typing import List

from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload

from storefront.core.errors import NotFoundError
from storefront.models.database import Configuration, ConfigurationItem


class ConfigurationRepository:
    def __init__(self, session: Session):
        self.session = session

    def get(self, configuration_id: int) -> Configuration:
        configuration = self.session.execute(
            select(Configuration)
            .options(selectinload(Configuration.items))
            .where(Configuration.id == configuration_id)
        ).scalar_one_or_none()
        if configuration is None:
            raise NotFoundError("Configuration", configuration_id)
        return configuration

    def add(self, configuration: Configuration) -> Configuration:
        self.session.add(configuration)
        self.session.flush()
        return configuration

    def containing_component(self, component_id: int) -> List[Configuration]:
        rows = self.session.execute(
            select(Configuration)
            .options(selectinload(Configuration.items))
            .where(
                Configuration.id.in_(
                    select(ConfigurationItem.configuration_id).where(
                        ConfigurationItem.component_id == component_id
                    )
                )
            )
        ).scalars()
        return list(rows)
