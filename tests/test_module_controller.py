"""
Tests for the module controller — generation gating and status mirroring.
"""

from tofuplane.core.engine.module_controller import ModuleReconciler, current_execution
from tofuplane.core.models import Execution, ExecutionTemplate, Module, TemplateMetadata
from tofuplane.core.models.meta import GENERATION_ANNOTATION, TRIGGERED_BY_ANNOTATION
from tofuplane.core.persistence.store import ConflictError


def _executions(store, module) -> list[Execution]:
    return [e for e in store.list(Execution) if e.spec.module_ref.name == module.name]


def _bump_generation(store, module) -> Module:
    current = store.get(Module, module.namespace, module.name)
    current.spec.version = f"v{current.metadata.generation + 1}"
    return store.update(current)


def _finish(store, execution, phase="Succeeded") -> None:
    current = store.get(Execution, execution.namespace, execution.name)
    current.status.phase = phase
    store.update_status(current)


class TestFirstExecution:
    def test_missing_module_is_noop(self, store):
        assert ModuleReconciler(store).reconcile("default", "ghost").done

    def test_creates_execution_stamped_with_generation(self, store, make_module):
        module = make_module()

        result = ModuleReconciler(store).reconcile(module.namespace, module.name)

        assert result.done
        executions = _executions(store, module)
        assert len(executions) == 1
        execution = executions[0]
        assert execution.metadata.annotations[GENERATION_ANNOTATION] == "1"
        assert execution.metadata.annotations[TRIGGERED_BY_ANNOTATION] == "module-created"
        assert execution.status.phase == "Pending"
        assert execution.controller_of().uid == module.metadata.uid
        assert execution.spec.module_ref.name == module.name
        assert execution.spec.module_ref.namespace == module.namespace
        assert execution.name.startswith(f"{module.name}-")

    def test_template_metadata_copied(self, store, make_module):
        template = ExecutionTemplate(
            metadata=TemplateMetadata(
                labels={"env": "prod"},
                annotations={"owner": "net-team"},
                generate_name="net-run-",
            )
        )
        template.spec.action = "apply"
        module = make_module(execution_template=template)

        ModuleReconciler(store).reconcile(module.namespace, module.name)

        execution = _executions(store, module)[0]
        assert execution.name.startswith("net-run-")
        assert execution.metadata.labels == {"env": "prod"}
        assert execution.metadata.annotations["owner"] == "net-team"
        assert execution.spec.action == "apply"

    def test_existing_execution_not_duplicated(self, store, make_module):
        module = make_module()
        reconciler = ModuleReconciler(store)

        reconciler.reconcile(module.namespace, module.name)
        reconciler.reconcile(module.namespace, module.name)

        assert len(_executions(store, module)) == 1


class TestGenerationGating:
    def test_same_generation_terminal_creates_nothing(self, store, make_module, make_execution):
        module = make_module()
        make_execution(module, generation=1, phase="Succeeded")

        ModuleReconciler(store).reconcile(module.namespace, module.name)

        assert len(_executions(store, module)) == 1

    def test_new_generation_supersedes_terminal_execution(self, store, make_module):
        module = make_module()
        reconciler = ModuleReconciler(store)
        reconciler.reconcile(module.namespace, module.name)
        first = _executions(store, module)[0]
        _finish(store, first)

        module = _bump_generation(store, module)
        assert module.metadata.generation == 2
        reconciler.reconcile(module.namespace, module.name)

        executions = _executions(store, module)
        assert len(executions) == 2
        newest = current_execution(store, module)
        assert newest.name != first.name
        assert newest.metadata.annotations[GENERATION_ANNOTATION] == "2"
        assert newest.metadata.annotations[TRIGGERED_BY_ANNOTATION] == "spec-change"
        # history is kept
        assert store.get(Execution, first.namespace, first.name).status.phase == "Succeeded"

    def test_running_execution_never_superseded(self, store, make_module, make_execution):
        module = make_module()
        make_execution(module, generation=1, phase="Running")
        module = _bump_generation(store, module)

        ModuleReconciler(store).reconcile(module.namespace, module.name)

        assert len(_executions(store, module)) == 1

    def test_failed_execution_also_superseded(self, store, make_module, make_execution):
        module = make_module()
        make_execution(module, generation=1, phase="Failed")
        module = _bump_generation(store, module)

        ModuleReconciler(store).reconcile(module.namespace, module.name)

        assert len(_executions(store, module)) == 2

    def test_last_execution_follows_newest(self, store, make_module):
        module = make_module()
        reconciler = ModuleReconciler(store)
        reconciler.reconcile(module.namespace, module.name)
        first = _executions(store, module)[0]
        _finish(store, first)
        reconciler.reconcile(module.namespace, module.name)
        assert store.get(Module, module.namespace, module.name).status.last_execution_name == first.name

        module = _bump_generation(store, module)
        reconciler.reconcile(module.namespace, module.name)
        second = current_execution(store, module)
        reconciler.reconcile(module.namespace, module.name)

        status = store.get(Module, module.namespace, module.name).status
        assert status.last_execution_name == second.name
        assert status.phase == "Pending"
        assert status.observed_generation == 2


class TestStatusMirror:
    def test_mirrors_name_and_phase(self, store, make_module, make_execution):
        module = make_module()
        execution = make_execution(module, phase="Running")

        ModuleReconciler(store).reconcile(module.namespace, module.name)

        status = store.get(Module, module.namespace, module.name).status
        assert status.last_execution_name == execution.name
        assert status.phase == "Running"
        assert status.observed_generation == 1

    def test_no_write_when_unchanged(self, store, make_module, make_execution):
        module = make_module()
        make_execution(module, phase="Running")
        reconciler = ModuleReconciler(store)
        reconciler.reconcile(module.namespace, module.name)
        version = store.get(Module, module.namespace, module.name).metadata.resource_version

        reconciler.reconcile(module.namespace, module.name)

        assert store.get(Module, module.namespace, module.name).metadata.resource_version == version

    def test_conflict_is_swallowed(self, store, make_module, make_execution, monkeypatch):
        module = make_module()
        make_execution(module, phase="Running")

        def _conflict(obj):
            raise ConflictError("the object has been modified")

        monkeypatch.setattr(store, "update_status", _conflict)
        result = ModuleReconciler(store).reconcile(module.namespace, module.name)

        assert result.done
        assert store.get(Module, module.namespace, module.name).status.phase == ""
