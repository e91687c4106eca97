import streamlit as st
import pandas as pd
from io import BytesIO
from datetime import datetime
from reportlab.lib.pagesizes import letter
from reportlab.lib import colors
from reportlab.lib.styles import getSampleStyleSheet, ParagraphStyle
from reportlab.lib.units import inch
from reportlab.platypus import SimpleDocTemplate, Paragraph, Spacer, Table, TableStyle
from reportlab.lib.enums import TA_CENTER

from onboard.assessments.assembler import process
from onboard.assessments.column_matcher import (
    DEFAULT_THRESHOLD,
    ENTITY_TARGET_FIELDS,
    REQUIRED_TARGET_FIELDS,
    apply_manual_overrides,
    match,
    targets_for_entity,
    unmatched_columns,
)
from onboard.assessments.file_reader import FileParseError, read_assessment_file
from onboard.assessments.format_detector import AssessmentSource, detect_assessment_source
from onboard.assessments.persistence import assessment_rows
from onboard.assessments.review_report import generate_import_review
from onboard.assessments.summary import breakdown_frame
from onboard.assessments.validation import (
    MappingError,
    require_mapped_fields,
    validate_linkit_structure,
)

# Page config
st.set_page_config(
    page_title="Assessment Import Review",
    page_icon="📝",
    layout="wide",
    initial_sidebar_state="expanded"
)

st.markdown("""
<style>
    :root {
        --primary-color: #1e3a8a;
        --accent-color: #10b981;
        --warning-color: #f59e0b;
        --text-dark: #1f2937;
        --text-light: #6b7280;
        --background-light: #f9fafb;
        --border-color: #e5e7eb;
    }

    #MainMenu {visibility: hidden;}
    footer {visibility: hidden;}

    h1 {
        color: var(--primary-color);
        font-weight: 700;
        letter-spacing: -0.02em;
    }

    .subtitle {
        color: var(--text-light);
        font-size: 1.05rem;
        margin-bottom: 1.5rem;
        padding-bottom: 1rem;
        border-bottom: 2px solid var(--border-color);
    }

    [data-testid="stMetricValue"] {
        font-weight: 700;
        color: var(--primary-color);
    }

    [data-testid="stMetricLabel"] {
        font-weight: 600;
        color: var(--text-light);
        text-transform: uppercase;
    }

    .stDownloadButton > button {
        background-color: var(--accent-color);
        color: white;
        border: none;
        border-radius: 0.5rem;
        font-weight: 600;
    }

    [data-testid="stFileUploader"] {
        border: 2px dashed var(--border-color);
        border-radius: 0.75rem;
        padding: 1.5rem;
    }

    [data-testid="stSidebar"] {
        background-color: var(--background-light);
    }

    .review-block {
        background-color: white;
        padding: 1.25rem;
        border-radius: 0.5rem;
        margin-bottom: 1rem;
        border-left: 4px solid var(--primary-color);
        font-family: 'Monaco', 'Menlo', monospace;
        font-size: 0.85rem;
    }
</style>
""", unsafe_allow_html=True)

STATUS_COLORS = {
    'READY': colors.HexColor('#d1fae5'),
    'BLOCKED': colors.HexColor('#fecaca'),
}


def generate_review_pdf(review_text, status, file_label):
    """Render the import review report as a PDF for sign-off."""
    buffer = BytesIO()
    doc = SimpleDocTemplate(buffer, pagesize=letter, topMargin=0.75*inch, bottomMargin=0.75*inch)
    styles = getSampleStyleSheet()
    title_style = ParagraphStyle(
        'ReviewTitle',
        parent=styles['Heading1'],
        fontSize=22,
        textColor=colors.HexColor('#1e3a8a'),
        spaceAfter=6,
        alignment=TA_CENTER
    )
    subtitle_style = ParagraphStyle(
        'ReviewSubtitle',
        parent=styles['Normal'],
        fontSize=11,
        textColor=colors.HexColor('#6b7280'),
        spaceAfter=18,
        alignment=TA_CENTER
    )
    heading_style = ParagraphStyle(
        'ReviewHeading',
        parent=styles['Heading2'],
        fontSize=13,
        textColor=colors.HexColor('#1e3a8a'),
        spaceBefore=10,
        spaceAfter=6
    )
    body_style = ParagraphStyle(
        'ReviewBody',
        parent=styles['Normal'],
        fontSize=9.5,
        textColor=colors.HexColor('#1f2937'),
        spaceAfter=4,
        leading=13
    )

    story = [
        Paragraph("Assessment Import Review", title_style),
        Paragraph(file_label, subtitle_style),
    ]

    status_table = Table([[f"Import Status: {status}"]], colWidths=[6.5*inch])
    status_table.setStyle(TableStyle([
        ('BACKGROUND', (0, 0), (-1, -1), STATUS_COLORS.get(status, colors.HexColor('#f3f4f6'))),
        ('ALIGN', (0, 0), (-1, -1), 'CENTER'),
        ('FONTNAME', (0, 0), (-1, -1), 'Helvetica-Bold'),
        ('FONTSIZE', (0, 0), (-1, -1), 13),
        ('TOPPADDING', (0, 0), (-1, -1), 10),
        ('BOTTOMPADDING', (0, 0), (-1, -1), 10),
    ]))
    story += [status_table, Spacer(1, 0.25*inch)]

    for line in review_text.split('\n'):
        line = line.strip()
        if not line or '═' in line or '─' in line:
            continue
        line = line.replace('&', '&amp;').replace('<', '&lt;').replace('>', '&gt;')
        if line.isupper() and len(line) > 10:
            story.append(Paragraph(line, heading_style))
        elif line.startswith(('✖', 'Status:')):
            story.append(Paragraph(f"<b>{line}</b>", body_style))
        else:
            story.append(Paragraph(line, body_style))

    doc.build(story)
    buffer.seek(0)
    return buffer


def render_report(review_text):
    """Show the plain-text report section by section."""
    section = []
    for line in review_text.split('\n'):
        if '═' in line:
            continue
        stripped = line.strip()
        if stripped and stripped.isupper() and len(stripped) > 10:
            if section:
                st.markdown('<div class="review-block">' + '<br>'.join(section) + '</div>', unsafe_allow_html=True)
                section = []
            st.markdown(f"#### {stripped}")
        elif stripped:
            section.append(line.replace('  ', '&nbsp;&nbsp;'))
    if section:
        st.markdown('<div class="review-block">' + '<br>'.join(section) + '</div>', unsafe_allow_html=True)


# ---------------------------------------------------------------------------
# Assessment import
# ---------------------------------------------------------------------------

def assessment_import(uploaded_file, header_row):
    parsed = read_assessment_file(uploaded_file, uploaded_file.name, header_row=header_row)
    st.success(
        f"✅ Read **{len(parsed.rows)} rows** and {len(parsed.headers)} columns "
        f"({parsed.layout} layout, header row {parsed.header_row + 1})"
    )
    if parsed.metadata:
        with st.expander("📄 Export details", expanded=False):
            for key, value in parsed.metadata.items():
                st.markdown(f"**{key}:** {value}")

    with st.expander("📋 Preview Data (first 10 rows)", expanded=False):
        st.dataframe(parsed.frame().head(10), use_container_width=True)

    detected = detect_assessment_source(parsed.headers)
    source = st.selectbox(
        "Export Source",
        options=[s.value for s in AssessmentSource],
        index=[s.value for s in AssessmentSource].index(detected.value),
        help="Detected from the column headers. Override if the detection is wrong."
    )

    if source == AssessmentSource.LINKIT.value:
        structure = validate_linkit_structure(parsed.headers)
        for message in structure.warnings:
            st.info(message)
        if not structure.is_valid:
            for message in structure.errors:
                st.error(f"❌ {message}")
            st.stop()

    with st.spinner("Assembling assessment records..."):
        result = process(parsed.rows, source, headers=parsed.headers)
        review = generate_import_review(result, uploaded_file.name, AssessmentSource(source))

    status = 'READY' if result.validation.is_valid else 'BLOCKED'
    summary = result.summary

    st.markdown("### Key Findings")
    col1, col2, col3, col4 = st.columns(4)
    with col1:
        st.metric("Import Status", status)
    with col2:
        st.metric("Students", f"{len(result.students):,}")
    with col3:
        st.metric("Assessments", f"{summary['total_assessments']:,}")
    with col4:
        st.metric("Average Score", f"{summary['average_scale_score']:.2f}")

    tab1, tab2, tab3, tab4 = st.tabs(["📄 Review", "📊 Breakdown", "🧾 Records", "⚑ Issues"])

    with tab1:
        render_report(review)
        st.download_button(
            label="📥 Download Review (PDF)",
            data=generate_review_pdf(review, status, uploaded_file.name),
            file_name=f"assessment_review_{datetime.now().strftime('%Y%m%d_%H%M')}.pdf",
            mime="application/pdf",
            use_container_width=True
        )

    with tab2:
        st.markdown("#### By Subject")
        st.dataframe(breakdown_frame(summary, "subject"), use_container_width=True)
        st.markdown("#### By Grade")
        st.dataframe(breakdown_frame(summary, "grade"), use_container_width=True)
        levels = summary['performance_level_distribution']
        if levels:
            st.markdown("#### Performance Levels")
            st.bar_chart(pd.Series(levels, name="Assessments"))

    with tab3:
        table = pd.DataFrame(assessment_rows(result.assessments))
        if table.empty:
            st.info("No assessment records were assembled.")
        else:
            display = table.drop(columns=["subscores", "unprocessed_data"])
            st.dataframe(display, use_container_width=True)
            st.download_button(
                label="📥 Download Records (CSV)",
                data=display.to_csv(index=False).encode("utf-8"),
                file_name="assessment_records.csv",
                mime="text/csv"
            )

    with tab4:
        if not result.validation.errors and not result.validation.warnings:
            st.success("No errors or warnings.")
        for message in result.validation.errors:
            st.error(f"✖ {message}")
        for message in result.validation.warnings:
            st.warning(f"⚑ {message}")


# ---------------------------------------------------------------------------
# Roster column mapping
# ---------------------------------------------------------------------------

def roster_mapping(uploaded_file, header_row, threshold):
    parsed = read_assessment_file(uploaded_file, uploaded_file.name, header_row=header_row)
    entity = st.selectbox("Import Type", options=list(ENTITY_TARGET_FIELDS))
    targets = targets_for_entity(entity)

    mappings = match(parsed.headers, targets, threshold)

    unmatched = unmatched_columns(mappings)
    overrides = {}
    if unmatched:
        st.markdown("#### Unmatched Columns")
        for column in unmatched:
            choice = st.selectbox(
                f"Map '{column}' to",
                options=["(ignore)"] + targets,
                key=f"override_{entity}_{column}"
            )
            if choice != "(ignore)":
                overrides[column] = choice
    mappings = apply_manual_overrides(mappings, overrides)

    st.markdown("#### Column Mapping")
    st.dataframe(
        pd.DataFrame([
            {
                "Source Column": m.source_column,
                "Target Field": m.target_field or "",
                "Confidence": f"{m.confidence:.0%}",
                "Matched": "✓" if m.matched else "",
                "Manual": "✓" if m.manual else "",
            }
            for m in mappings
        ]),
        use_container_width=True
    )

    try:
        require_mapped_fields(mappings, REQUIRED_TARGET_FIELDS[entity], entity)
    except MappingError as e:
        st.error("❌ Required fields are not mapped")
        st.code(str(e))
        return
    st.success("✅ All required fields are mapped")


# Header
st.markdown("# 📝 Assessment Import Review")
st.markdown('<div class="subtitle">NJSLA, LinkIt! and Start Strong exports | Review before records are written</div>', unsafe_allow_html=True)

with st.sidebar:
    st.markdown("## Import Settings")
    mode = st.radio("Mode", options=["Assessment Import", "Roster Column Mapping"])

    force_header = st.checkbox(
        "Set header row manually",
        help="LinkIt exports are detected automatically. Use this when the header row is not found."
    )
    header_row = None
    if force_header:
        header_row = int(st.number_input(
            "Header row (1 = first non-blank row)",
            min_value=1,
            value=5,
            help="Blank rows are dropped before counting, so count only rows that have content.",
        )) - 1

    threshold = DEFAULT_THRESHOLD
    if mode == "Roster Column Mapping":
        threshold = st.slider("Match threshold", min_value=0.0, max_value=1.0, value=DEFAULT_THRESHOLD, step=0.05)

    st.markdown("---")
    st.markdown("""
    **Assessment exports need:**
    - Student, ID, Grade columns
    - Assessment columns named
      `<assessment> - <field>`
      (Result Date, Level, Scaled, Percent, Raw)
    """)

uploaded_file = st.file_uploader(
    "Choose a file",
    type=['csv', 'xlsx', 'xls'],
    help="Upload a CSV or Excel export",
    label_visibility="collapsed"
)

if uploaded_file is not None:
    try:
        if mode == "Assessment Import":
            assessment_import(uploaded_file, header_row)
        else:
            roster_mapping(uploaded_file, header_row, threshold)
    except FileParseError as e:
        st.error(f"❌ {e}")
    except Exception as e:
        st.error(f"❌ Error processing file: {str(e)}")
        with st.expander("See error details"):
            st.exception(e)
else:
    st.info("👆 Upload an assessment export to get started")
