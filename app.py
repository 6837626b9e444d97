import streamlit as st
import pandas as pd

from data_sources import GeoJSONDataSource
from directions import CircularRouteBuilder, IntervalGate, OpenRouteServiceProvider
from heroloops_backend import CallbackProgressSink, generate_curated_routes
from logging_config import setup_logging
from loop_config import ACTIVITIES, HeroLoopError, SynthesisConfig
from route_storage import SqlRouteStore, build_postgres_url, route_to_gpx

st.set_page_config(page_title="HeroLoops", layout="wide")
st.markdown("# 🏃‍♂️ HeroLoops")
st.markdown("Generate curated Hero Loop routes for an area from its imported GIS infrastructure.")

setup_logging(st.secrets.get("LOG_LEVEL", "INFO"))

# --- 1. Area & activity ---
area_id = st.text_input("Area ID")
area_name = st.text_input("Area display name", value=area_id)
activity = st.selectbox("Activity", ACTIVITIES)
enable_hybrid = st.checkbox("Hybrid mode (snap to fitness facilities)", value=True)
data_dir = st.text_input("GIS data directory", value=st.secrets.get("DATA_DIR", "data"))
save_to_db = st.checkbox("Replace stored routes for this area", value="DB_HOST" in st.secrets)


@st.cache_resource
def get_store():
    return SqlRouteStore(build_postgres_url(st.secrets))


# --- 2. Run ---
if st.button("Generate Hero Loops", disabled=not area_id):
    progress_bar = st.progress(0, text="Starting...")

    def on_progress(event):
        progress_bar.progress(event.percent, text=f"{event.phase}: {event.detail}")

    config = SynthesisConfig(enable_hybrid=enable_hybrid)
    source = GeoJSONDataSource(data_dir, fallback_activity=activity)
    builder = CircularRouteBuilder(
        OpenRouteServiceProvider(api_key=st.secrets["ORS_API_KEY"]),
        IntervalGate(config.request_interval_s),
    )

    try:
        result = generate_curated_routes(
            area_id,
            area_name or area_id,
            activity,
            segment_source=source,
            route_builder=builder,
            facility_source=source,
            store=get_store() if save_to_db else None,
            config=config,
            progress=CallbackProgressSink(on_progress),
        )
    except HeroLoopError as e:
        st.error("❌ Route generation failed!")
        st.exception(e)
        st.stop()

    # --- 3. Summary ---
    if result.status == "no_compatible_infrastructure":
        st.warning(f"⚠️ No infrastructure in this area is suitable for {activity}.")
    elif result.status == "no_infrastructure":
        st.warning("⚠️ No infrastructure has been imported for this area yet.")
    else:
        st.success(f"✅ {len(result.curated_routes)} Hero Loops created ({result.stats.hybrid_routes} hybrid)")

    st.json(result.stats.to_dict())

    if result.curated_routes:
        table = pd.DataFrame([
            {
                "Name": r.name,
                "Tier": r.curated_tier,
                "Distance (km)": r.distance_km,
                "Duration (min)": r.duration_min,
                "Calories": r.calories,
                "Stops": len(r.facility_stops),
                "Cluster": r.cluster_index + 1,
            }
            for r in result.curated_routes
        ])
        st.dataframe(table, use_container_width=True)

        for r in result.curated_routes:
            st.download_button(
                f"📁 GPX: {r.name}",
                data=route_to_gpx(r),
                file_name=f"{r.id}.gpx",
                mime="application/gpx+xml",
                key=r.id,
            )
