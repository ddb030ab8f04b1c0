"""Referential and format checks on desired state"""

from orchestrator.core.loader import DesiredStateLoader
from orchestrator.core.validator import PolicyValidator, _strip_ports
from orchestrator.schemas.state import (
    ACLPolicy,
    ACLRule,
    DesiredState,
    Route,
    SSHRule,
    User,
)

from conftest import write_documents


def _state(policy=None, users=(), routes=()):
    return DesiredState(users=tuple(users), routes=tuple(routes), policy=policy or ACLPolicy())


def test_fixture_configuration_is_valid(loader):
    result = PolicyValidator().validate_store(loader)

    assert result.valid
    assert result.errors == []


def test_undefined_tag_reference():
    policy = ACLPolicy(acls=[ACLRule(action="accept", src=["*"], dst=["tag:eng:*"])])

    result = PolicyValidator().validate(_state(policy))

    assert not result.valid
    assert result.errors == ["undefined tag reference: tag:eng"]
    assert "undefined tag reference: tag:eng" in result.message


def test_undefined_group_in_src_and_tag_owner():
    policy = ACLPolicy(
        tag_owners={"tag:web": ["group:web-admins"]},
        acls=[ACLRule(action="accept", src=["group:devs"], dst=["tag:web:80"])],
    )

    result = PolicyValidator().validate(_state(policy))

    assert "undefined group reference: group:web-admins" in result.errors
    assert "undefined group reference: group:devs" in result.errors


def test_errors_are_deduplicated():
    policy = ACLPolicy(acls=[
        ACLRule(action="accept", src=["group:devs"], dst=["*:*"]),
        ACLRule(action="accept", src=["group:devs"], dst=["*:22"]),
    ])

    result = PolicyValidator().validate(_state(policy))

    assert result.errors == ["undefined group reference: group:devs"]


def test_invalid_actions():
    policy = ACLPolicy(
        acls=[ACLRule(action="allow", src=["*"], dst=["*:*"])],
        ssh=[SSHRule(action="deny", src=["*"], dst=["*"], users=["root"])],
    )

    result = PolicyValidator().validate(_state(policy))

    assert "invalid action in ACL rule 1: allow" in result.errors
    assert "invalid action in SSH rule 1: deny" in result.errors


def test_hosts_and_autogroups():
    policy = ACLPolicy(
        hosts={"db": "10.0.0.5", "broken": "not-an-ip"},
        acls=[
            ACLRule(action="accept", src=["autogroup:member"], dst=["db:5432"]),
            ACLRule(action="accept", src=["autogroup:contractors"], dst=["unknown-host:*"]),
        ],
    )

    result = PolicyValidator().validate(_state(policy))

    assert result.errors == [
        "invalid host address for broken: not-an-ip",
        "undefined autogroup reference: autogroup:contractors",
        "undefined host reference: unknown-host",
    ]


def test_literal_addresses_and_user_selectors_need_no_declaration():
    policy = ACLPolicy(acls=[
        ACLRule(action="accept", src=["alice@", "bob@example.com"], dst=["10.0.0.0/8:*"]),
        ACLRule(action="accept", src=["carol"], dst=["192.168.1.10:443", "fd7a:115c:a1e0::/48"]),
    ])

    result = PolicyValidator().validate(_state(policy, users=[User(name="carol")]))

    assert result.valid, result.errors


def test_tag_owner_key_prefix():
    policy = ACLPolicy(tag_owners={"server": ["alice@"]})

    result = PolicyValidator().validate_policy(policy)

    assert result.errors == ["tagOwners key must start with 'tag:': server"]


def test_duplicate_user_and_bad_prefix():
    desired = _state(
        users=[User(name="alice"), User(name="alice")],
        routes=[Route(node="gw", routes=["10.0.0.0/33"])],
    )

    result = PolicyValidator().validate(desired)

    assert "duplicate user: alice" in result.errors
    assert "invalid route prefix for node gw: 10.0.0.0/33" in result.errors


def test_load_failure_is_invalid(tmp_path):
    data_dir = write_documents(tmp_path, acls=None)

    result = PolicyValidator().validate_store(DesiredStateLoader(data_dir))

    assert not result.valid
    assert "Failed to load ACL" in result.message


def test_strip_ports():
    assert _strip_ports("*:*") == "*"
    assert _strip_ports("tag:web:80,443") == "tag:web"
    assert _strip_ports("host:8000-8100") == "host"
    assert _strip_ports("tag:web") == "tag:web"
    assert _strip_ports("group:eng") == "group:eng"
