bitcoind_arguments_template = [
    "-rpcport={rpc_port}",
    "-rpcuser={rpc_user}",
    "-rpcpassword={rpc_password}",
    "-server=1",
    "-txindex=1",
    "-fallbackfee=0.00001000",
]

network_flags = {
    'regtest': '-regtest',
    'testnet': '-testnet',
    'signet': '-signet',
    'mainnet': None,
}

dot_header_template = \
    "digraph {{\n" \
    "    rankdir=LR;\n" \
    "    splines=curved;\n" \
    "    bgcolor=\"{background}\";\n" \
    "    node [\n" \
    "        style=\"filled\",\n" \
    "        gradientangle=270,\n" \
    "        fillcolor=\"{node_fill}\",\n" \
    "        shape=\"box\",\n" \
    "        rounded=true,\n" \
    "        fontname=\"Arial\",\n" \
    "        fontsize=12\n" \
    "    ];\n" \
    "    edge [\n" \
    "        color=\"{edge_color}\",\n" \
    "        penwidth=2.0,\n" \
    "        arrowsize=0.8\n" \
    "    ];\n"

dot_node_template = "    {index} [ label = \"{label}\" ];\n"

dot_edge_template = "    {source} -> {target} [ label = \"{label}\" ];\n"

dot_legend_template = \
    "    subgraph cluster_legend {\n" \
    "        label=\"Legend\";\n" \
    "        node [shape=none];\n" \
    "        legend [label=<\n" \
    "            <table border=\"0\">\n" \
    "                <tr><td>Active node</td></tr>\n" \
    "                <tr><td>Open channel</td></tr>\n" \
    "            </table>\n" \
    "        >];\n" \
    "    }\n" \
    "}\n"

dot_node_label_template = \
    "{alias}\\n({short_id})\\nCapacity: {capacity} msat\\nState: {state}"

dot_edge_label_template = "Capacity: {capacity}\\nState: {state}"
