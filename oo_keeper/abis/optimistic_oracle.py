# /oo_keeper/abis/optimistic_oracle.py
def _event(name, inputs):
    return {
        "anonymous": False,
        "inputs": [{"indexed": indexed, "internalType": t, "name": n, "type": t} for n, t, indexed in inputs],
        "name": name,
        "type": "event",
    }


def _function(name, inputs, outputs, mutability="nonpayable"):
    return {
        "inputs": [{"internalType": t, "name": n, "type": t} for n, t in inputs],
        "name": name,
        "outputs": [{"internalType": t, "name": n, "type": t} for n, t in outputs],
        "stateMutability": mutability,
        "type": "function",
    }


_REQUEST_ARGS = [("requester", "address"), ("identifier", "bytes32"), ("timestamp", "uint256"), ("ancillaryData", "bytes")]

OPTIMISTIC_ORACLE_ABI = [
    _event("RequestPrice", [
        ("requester", "address", True),
        ("identifier", "bytes32", False),
        ("timestamp", "uint256", False),
        ("ancillaryData", "bytes", False),
        ("currency", "address", False),
        ("reward", "uint256", False),
        ("finalFee", "uint256", False),
    ]),
    _event("ProposePrice", [
        ("requester", "address", True),
        ("proposer", "address", True),
        ("identifier", "bytes32", False),
        ("timestamp", "uint256", False),
        ("ancillaryData", "bytes", False),
        ("proposedPrice", "int256", False),
        ("expirationTimestamp", "uint256", False),
        ("currency", "address", False),
    ]),
    _event("DisputePrice", [
        ("requester", "address", True),
        ("proposer", "address", True),
        ("disputer", "address", True),
        ("identifier", "bytes32", False),
        ("timestamp", "uint256", False),
        ("ancillaryData", "bytes", False),
        ("proposedPrice", "int256", False),
    ]),
    _event("Settle", [
        ("requester", "address", True),
        ("proposer", "address", True),
        ("disputer", "address", True),
        ("identifier", "bytes32", False),
        ("timestamp", "uint256", False),
        ("ancillaryData", "bytes", False),
        ("price", "int256", False),
        ("payout", "uint256", False),
    ]),
    _function("proposePrice", _REQUEST_ARGS + [("proposedPrice", "int256")], [("totalBond", "uint256")]),
    _function("disputePrice", _REQUEST_ARGS, [("totalBond", "uint256")]),
    _function("settle", _REQUEST_ARGS, [("payout", "uint256")]),
    _function("getCurrentTime", [], [("", "uint256")], "view"),
    _function("defaultLiveness", [], [("", "uint256")], "view"),
    _function("stampAncillaryData", [("ancillaryData", "bytes"), ("requester", "address")], [("", "bytes")], "view"),
]

# OracleAncillaryInterface: the DVM, or MockOracleAncillary in test deployments.
FALLBACK_ORACLE_ABI = [
    _function("hasPrice", [("identifier", "bytes32"), ("time", "uint256"), ("ancillaryData", "bytes")], [("", "bool")], "view"),
    _function("getPrice", [("identifier", "bytes32"), ("time", "uint256"), ("ancillaryData", "bytes")], [("", "int256")], "view"),
]

ERC20_ABI = [
    _function("allowance", [("owner", "address"), ("spender", "address")], [("", "uint256")], "view"),
    _function("approve", [("spender", "address"), ("amount", "uint256")], [("", "bool")]),
    _function("balanceOf", [("account", "address")], [("", "uint256")], "view"),
]
