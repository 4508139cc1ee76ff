from dresources import DResource
from external_services import ExternalServices
from vault_state import StateStore


# noinspection PyAbstractClass
class VaultResource(DResource):

    def __init__(self, data: dict, svc: ExternalServices) -> None:
        super().__init__(data=data, svc=svc)
        self.add_plug(name='vault-config', container_path='/deployster/vault.yaml', optional=True, writable=False)
        self.add_plug(name='vault-state', container_path='/deployster/vault-state', optional=False, writable=True)

    @property
    def state_kind(self) -> str:
        """Prefix of this resource's tracked state file; resources of different kinds may share a name."""
        return type(self).__name__

    @property
    def store(self) -> StateStore:
        return StateStore(state_dir=self.svc.context.state_dir, kind=self.state_kind, resource_name=self.info.name)
