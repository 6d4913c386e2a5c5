"""ABI of the KnowledgeBaseContributor contract (the subset this package calls)."""

from __future__ import annotations

CONTRACT_NAME = "KnowledgeBaseContributor"
CONTRIBUTION_ADDED_EVENT = "ContributionAdded"

_CONTRIBUTION_TUPLE = {
    "type": "tuple",
    "internalType": "struct KnowledgeBaseContributor.Contribution",
    "components": [
        {"name": "contributorAddress", "type": "address", "internalType": "address"},
        {"name": "timestamp", "type": "uint256", "internalType": "uint256"},
        {"name": "contributionURL", "type": "string", "internalType": "string"},
        {"name": "tags", "type": "string[]", "internalType": "string[]"},
    ],
}

CONTRACT_ABI: list[dict] = [
    {
        "type": "function",
        "name": "addContribution",
        "stateMutability": "nonpayable",
        "inputs": [
            {"name": "_contributionURL", "type": "string", "internalType": "string"},
            {"name": "_tags", "type": "string[]", "internalType": "string[]"},
        ],
        "outputs": [{"name": "", "type": "uint256", "internalType": "uint256"}],
    },
    {
        "type": "function",
        "name": "getContribution",
        "stateMutability": "view",
        "inputs": [{"name": "_id", "type": "uint256", "internalType": "uint256"}],
        "outputs": [{"name": "", **_CONTRIBUTION_TUPLE}],
    },
    {
        "type": "function",
        "name": "getTotalContributions",
        "stateMutability": "view",
        "inputs": [],
        "outputs": [{"name": "", "type": "uint256", "internalType": "uint256"}],
    },
    {
        "type": "function",
        "name": "getContributionsByContributor",
        "stateMutability": "view",
        "inputs": [{"name": "_contributor", "type": "address", "internalType": "address"}],
        "outputs": [{"name": "", "type": "uint256[]", "internalType": "uint256[]"}],
    },
    {
        "type": "function",
        "name": "getAllContributions",
        "stateMutability": "view",
        "inputs": [],
        "outputs": [
            {
                "name": "",
                **{**_CONTRIBUTION_TUPLE, "type": "tuple[]"},
                "internalType": "struct KnowledgeBaseContributor.Contribution[]",
            }
        ],
    },
    {
        "type": "event",
        "name": CONTRIBUTION_ADDED_EVENT,
        "anonymous": False,
        "inputs": [
            {"name": "contributionId", "type": "uint256", "indexed": True, "internalType": "uint256"},
            {"name": "contributor", "type": "address", "indexed": True, "internalType": "address"},
            {"name": "contributionURL", "type": "string", "indexed": False, "internalType": "string"},
            {"name": "timestamp", "type": "uint256", "indexed": False, "internalType": "uint256"},
        ],
    },
]
