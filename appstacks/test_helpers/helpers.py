"""
This module holds common helper functions for making testing easy
"""

# Standard
from contextlib import contextmanager
from unittest import mock
import copy
import inspect
import os

# First Party
import aconfig
import alog

# Local
from appstacks import constants
from appstacks.config import library_config as config_detail_dict
from appstacks.deploy_manager.dry_run_deploy_manager import DryRunDeployManager
from appstacks.utils import to_plain

log = alog.use_channel("TEST")


def configure_logging():
    alog.configure(
        os.environ.get("LOG_LEVEL", "off"),
        os.environ.get("LOG_FILTERS", ""),
        formatter="json"
        if os.environ.get("LOG_JSON", "").lower() == "true"
        else "pretty",
        thread_id=os.environ.get("LOG_THREAD_ID", "").lower() == "true",
    )


configure_logging()

TEST_INSTANCE_NAME = "test-instance"
TEST_INSTANCE_UID = "12345678-1234-1234-1234-123456789012"
TEST_NAMESPACE = "test"
SOME_OTHER_NAMESPACE = "somewhere"
OPERATOR_NAMESPACE = "default"


def setup_cr(
    kind="RuntimeComponent",
    api_version="app.stacks/v1beta1",
    spec=None,
    name=TEST_INSTANCE_NAME,
    namespace=TEST_NAMESPACE,
    generation=2,
    **kwargs,
):
    """Make a CR manifest with the given spec. The default generation is past
    the first so that reconciles do not stop after writing the defaults.
    """
    spec = spec or {}
    cr_dict = kwargs or {}
    cr_dict.setdefault("kind", kind)
    cr_dict.setdefault("apiVersion", api_version)
    cr_dict.setdefault("metadata", {}).setdefault("name", name)
    cr_dict.setdefault("metadata", {}).setdefault("namespace", namespace)
    cr_dict.setdefault("metadata", {}).setdefault("uid", TEST_INSTANCE_UID)
    cr_dict.setdefault("metadata", {}).setdefault("generation", generation)
    cr_dict.setdefault("spec", {}).update(copy.deepcopy(spec))
    cr_dict["spec"].setdefault("applicationImage", "my-image")
    return aconfig.Config(cr_dict, override_env_vars=False)


def make_secret(name, namespace=TEST_NAMESPACE, data=None, **metadata):
    """Make a Secret manifest with already-encoded data"""
    metadata.update({"name": name, "namespace": namespace})
    return {
        "apiVersion": constants.CORE_API_VERSION,
        "kind": "Secret",
        "metadata": metadata,
        "type": "Opaque",
        "data": data or {},
    }


@contextmanager
def library_config(**config_overrides):
    """This context manager sets library config values temporarily and reverts
    them on completion
    """
    # Override the configs and hang onto the old values
    old_vals = {}
    for key, val in config_overrides.items():
        if key in config_detail_dict:
            old_vals[key] = config_detail_dict[key]
        config_detail_dict[key] = val

    # Yield to the context
    try:
        yield
    finally:
        # Revert to the old values
        for key in config_overrides:
            if key in old_vals:
                config_detail_dict[key] = old_vals[key]
            else:
                del config_detail_dict[key]


def get_failable_method(fail_flag, method, failure_return=False):
    log.debug4(
        "Setting up failable mock of [%s] with fail flag: %s", str(method), fail_flag
    )

    def failable_method(*args, **kwargs):
        log.debug4(
            "Running failable mock of [%s] with fail flag: %s", str(method), fail_flag
        )
        if isinstance(fail_flag, Exception) or (
            inspect.isclass(fail_flag) and issubclass(fail_flag, Exception)
        ):
            log.debug4("Raising in failable mock")
            raise fail_flag
        if callable(fail_flag):
            log.debug4("Calling callable fail flag")
            res = fail_flag()
            if res is not None:
                return res
        elif fail_flag == "assert":
            log.debug4("Asserting in failable mock")
            raise AssertionError(f"You told me to fail {method}!")
        elif fail_flag:
            log.debug4("Returning %s", failure_return)
            return failure_return
        log.debug4("Passing through (%s, **%s)", args, kwargs)
        res = method(*args, **kwargs)
        log.debug4("Passthrough res: %s", res)
        return res

    return failable_method


class FailOnce:
    """Helper callable that will fail once on the N'th call"""

    def __init__(self, fail_val, fail_number=1):
        self.call_count = 0
        self.fail_number = fail_number
        self.fail_val = fail_val

    def __call__(self, *_, **__):
        self.call_count += 1
        if self.call_count == self.fail_number:
            log.debug("Failing on call %d with %s", self.call_count, self.fail_val)
            if isinstance(self.fail_val, type) and issubclass(self.fail_val, Exception):
                raise self.fail_val("Raising!")
            return self.fail_val
        log.debug("Not failing on call %d", self.call_count)
        return None


class MockDeployManager(DryRunDeployManager):
    """The MockDeployManager wraps a standard DryRunDeployManager and adds
    configuration options to simulate failures in each of its operations.
    """

    def __init__(
        self,
        create_fail=False,
        update_fail=False,
        disable_fail=False,
        disable_raise=False,
        get_state_fail=False,
        get_state_raise=False,
        set_status_fail=False,
        set_status_raise=False,
        auto_enable=True,
        resources=None,
        **kwargs,
    ):
        """This DeployManager can be configured to have various failure cases
        and will mock the state of the cluster so that get_object_current_state
        will pull its information from the local dict. The create and update
        fail flags are expected to be exceptions since those operations raise
        on failure.
        """
        resources = [to_plain(resource) for resource in resources or []]
        for resource in resources:
            resource.setdefault("apiVersion", constants.CORE_API_VERSION)
        super().__init__(resources, **kwargs)

        self.create_fail = create_fail
        self.update_fail = update_fail
        self.disable_fail = "assert" if disable_raise else disable_fail
        self.get_state_fail = "assert" if get_state_raise else get_state_fail
        self.set_status_fail = "assert" if set_status_raise else set_status_fail

        # If auto-enabling, turn the mocks on now
        if auto_enable:
            self.enable_mocks()

    #######################
    ## Helpers for Tests ##
    #######################

    def enable_mocks(self):
        """Turn the mocks on"""
        self.create = mock.Mock(
            side_effect=get_failable_method(self.create_fail, super().create)
        )
        self.update = mock.Mock(
            side_effect=get_failable_method(self.update_fail, super().update)
        )
        self.disable = mock.Mock(
            side_effect=get_failable_method(
                self.disable_fail, super().disable, (False, False)
            )
        )
        self.get_object_current_state = mock.Mock(
            side_effect=get_failable_method(
                self.get_state_fail, super().get_object_current_state, (False, None)
            )
        )
        self.set_status = mock.Mock(
            side_effect=get_failable_method(
                self.set_status_fail, super().set_status, (False, False)
            )
        )

    def get_obj(self, kind, name, namespace=TEST_NAMESPACE, api_version=None):
        return self.get_object_current_state(kind, name, namespace, api_version)[1]

    def has_obj(self, *args, **kwargs):
        return self.get_obj(*args, **kwargs) is not None

    def get_condition(self, condition_type, name=TEST_INSTANCE_NAME, **kwargs):
        """Get a condition from the status of a CR in the cluster"""
        kwargs.setdefault("kind", "RuntimeComponent")
        obj = self.get_obj(name=name, **kwargs) or {}
        for condition in (obj.get("status") or {}).get("conditions") or []:
            if condition.get("type") == condition_type:
                return condition
        return {}
