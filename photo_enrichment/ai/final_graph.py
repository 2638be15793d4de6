from langgraph.graph import END, StateGraph

from photo_enrichment.ai.routing import (
    route_after_classify,
    route_after_context,
    route_after_food_location,
    route_after_identify,
    route_after_location_intelligence,
    route_after_valuate,
)
from photo_enrichment.ai.states import PhotoState, check_update


def checked(node):
    """Wraps a node so its partial update is validated before LangGraph merges it."""
    async def run(state):
        update = await node(state)
        check_update(update)
        return update

    return run


def build_photo_graph(
    classify_image_node,         # async callable(state) -> dict
    collect_context_node,
    location_intelligence_node,
    food_location_node,
    food_metadata_node,
    identify_collectible_node,
    valuate_collectible_node,
    describe_collectible_node,
    generate_metadata_node,
):
    g = StateGraph(PhotoState)

    g.add_node("classify_image", checked(classify_image_node))
    g.add_node("collect_context", checked(collect_context_node))

    # scenery / generic
    g.add_node("location_intelligence", checked(location_intelligence_node))
    g.add_node("generate_metadata", checked(generate_metadata_node))

    # food
    g.add_node("food_location", checked(food_location_node))
    g.add_node("food_metadata", checked(food_metadata_node))

    # collectibles
    g.add_node("identify_collectible", checked(identify_collectible_node))
    g.add_node("valuate_collectible", checked(valuate_collectible_node))
    g.add_node("describe_collectible", checked(describe_collectible_node))

    g.set_entry_point("classify_image")
    g.add_conditional_edges("classify_image", route_after_classify, {
        "collect_context": "collect_context",
        "identify_collectible": "identify_collectible",
        "generate_metadata": "generate_metadata",
        "__end__": END,
    })
    g.add_conditional_edges("collect_context", route_after_context, {
        "food_location": "food_location",
        "location_intelligence": "location_intelligence",
        "__end__": END,
    })
    g.add_conditional_edges("location_intelligence", route_after_location_intelligence, {
        "generate_metadata": "generate_metadata",
        "__end__": END,
    })
    g.add_conditional_edges("food_location", route_after_food_location, {
        "food_metadata": "food_metadata",
        "__end__": END,
    })
    g.add_conditional_edges("identify_collectible", route_after_identify, {
        "valuate_collectible": "valuate_collectible",
        "__end__": END,
    })
    g.add_conditional_edges("valuate_collectible", route_after_valuate, {
        "describe_collectible": "describe_collectible",
        "__end__": END,
    })

    # terminal generators
    g.add_edge("generate_metadata", END)
    g.add_edge("food_metadata", END)
    g.add_edge("describe_collectible", END)

    return g.compile()
