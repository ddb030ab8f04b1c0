"""Desired-state loading from the data directory"""

import pytest
import yaml

from orchestrator.core.exceptions import LoadError
from orchestrator.core.loader import DesiredStateLoader
from orchestrator.schemas.state import ACLPolicy, ACLRule

from conftest import write_documents


def test_load_all_documents(loader):
    desired = loader.load()

    assert [u.name for u in desired.users] == ["alice", "bob"]
    assert desired.users[0].email == "alice@example.com"
    assert desired.routes[0].node == "office-gw"
    assert desired.routes[0].routes == ["192.168.1.0/24"]
    assert "group:admins" in desired.policy.groups
    assert desired.policy.tag_owners == {"tag:server": ["group:admins"]}
    assert len(desired.policy.acls) == 2
    assert desired.policy.ssh[0].users == ["root", "autogroup:nonroot"]


def test_missing_file_is_load_error(tmp_path):
    data_dir = write_documents(tmp_path, users=None)

    with pytest.raises(LoadError) as exc:
        DesiredStateLoader(data_dir).load()

    assert exc.value.document == "users"
    assert "file not found" in str(exc.value)


def test_invalid_yaml_is_load_error(tmp_path):
    data_dir = write_documents(tmp_path, routes="- node: [unclosed\n")

    with pytest.raises(LoadError) as exc:
        DesiredStateLoader(data_dir).load_routes()

    assert "invalid YAML" in exc.value.reason


def test_missing_required_key_is_load_error(tmp_path):
    data_dir = write_documents(tmp_path, users="- email: nobody@example.com\n")

    with pytest.raises(LoadError) as exc:
        DesiredStateLoader(data_dir).load_users()

    assert "name" in exc.value.reason


def test_wrong_document_shape(tmp_path):
    data_dir = write_documents(tmp_path, users="name: alice\n", acls="- not a mapping\n")
    loader = DesiredStateLoader(data_dir)

    with pytest.raises(LoadError, match="expected a list"):
        loader.load_users()
    with pytest.raises(LoadError, match="expected a mapping"):
        loader.load_acl()


def test_empty_documents_load_as_empty(tmp_path):
    data_dir = write_documents(tmp_path, users="", routes="", acls="")

    desired = DesiredStateLoader(data_dir).load()

    assert desired.users == ()
    assert desired.routes == ()
    assert desired.policy == ACLPolicy()


def test_unknown_keys_are_ignored(tmp_path):
    data_dir = write_documents(
        tmp_path,
        users="- name: carol\n  department: finance\n",
        acls="groups: {}\nrandomSection: 1\n",
    )
    loader = DesiredStateLoader(data_dir)

    assert loader.load_users()[0].name == "carol"
    assert loader.load_acl().groups == {}


def test_null_policy_sections(tmp_path):
    data_dir = write_documents(tmp_path, acls="groups:\nacls:\nhosts:\n")

    policy = DesiredStateLoader(data_dir).load_acl()

    assert policy.groups == {}
    assert policy.acls == []
    assert policy.to_headscale() == {}


def test_save_acl_round_trips(loader):
    policy = ACLPolicy(
        groups={"group:ops": ["carol@"]},
        tag_owners={"tag:db": ["group:ops"]},
        acls=[ACLRule(action="accept", src=["group:ops"], dst=["tag:db:5432"])],
    )

    loader.save_acl(policy)

    assert loader.load_acl() == policy
    raw = yaml.safe_load(loader.acl_path.read_text())
    assert "tagOwners" in raw
    assert list(loader.data_path.glob(".acls-*")) == []


def test_storage_accessible(tmp_path):
    assert DesiredStateLoader(tmp_path).storage_accessible()
    assert not DesiredStateLoader(tmp_path / "missing").storage_accessible()
