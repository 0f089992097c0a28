"""
Embedded QID lookup tables.

Keys are already normalized (see ``normalize_key``). Cities are keyed as
``"city, st"``; regions accept both full names and USPS abbreviations.
"""

from typing import Dict

from cfp.core.models import QidAttributeType

CITY_QIDS: Dict[str, str] = {
    "new york, ny": "Q60",
    "new york city, ny": "Q60",
    "los angeles, ca": "Q65",
    "chicago, il": "Q1297",
    "houston, tx": "Q16555",
    "phoenix, az": "Q16556",
    "philadelphia, pa": "Q1345",
    "san antonio, tx": "Q975",
    "san diego, ca": "Q16552",
    "dallas, tx": "Q16557",
    "san jose, ca": "Q16553",
    "austin, tx": "Q16559",
    "jacksonville, fl": "Q18156",
    "fort worth, tx": "Q16558",
    "columbus, oh": "Q16567",
    "san francisco, ca": "Q62",
    "indianapolis, in": "Q6346",
    "seattle, wa": "Q5083",
    "denver, co": "Q16554",
    "washington, dc": "Q61",
    "boston, ma": "Q100",
    "detroit, mi": "Q12439",
    "portland, or": "Q6106",
    "atlanta, ga": "Q23556",
    "miami, fl": "Q8652",
    "las vegas, nv": "Q23768",
    "baltimore, md": "Q5092",
    "pittsburgh, pa": "Q1342",
    "cleveland, oh": "Q37320",
    "st louis, mo": "Q38022",
    "saint louis, mo": "Q38022",
    "minneapolis, mn": "Q36091",
    "oakland, ca": "Q17042",
    "sacramento, ca": "Q18013",
    "providence, ri": "Q18383",
}

INDUSTRY_QIDS: Dict[str, str] = {
    # Healthcare
    "healthcare": "Q31207",
    "medical": "Q31207",
    "medical services": "Q31207",
    "health services": "Q31207",
    "physician services": "Q5532073",
    "physician group": "Q5532073",
    "hospital": "Q16917",
    "clinic": "Q61040947",
    "dentistry": "Q12128",
    "dental": "Q12128",
    "pharmacy": "Q614304",
    "pharmaceutical": "Q420927",
    "biotechnology": "Q7108",
    "medical device": "Q861699",
    # Technology
    "technology": "Q11016",
    "information technology": "Q11016",
    "it": "Q11016",
    "software": "Q7397",
    "software development": "Q7397",
    "software engineering": "Q7397",
    "computer": "Q68",
    "computing": "Q68",
    "telecommunications": "Q418",
    "internet": "Q75",
    "web services": "Q7978428",
    "saas": "Q1196654",
    "cloud computing": "Q483639",
    "cybersecurity": "Q14644",
    "artificial intelligence": "Q11660",
    "machine learning": "Q2539",
    "data science": "Q2374463",
    # Finance
    "finance": "Q43015",
    "financial services": "Q43015",
    "banking": "Q22687",
    "investment": "Q2920921",
    "insurance": "Q43183",
    "real estate": "Q66344",
    "property": "Q66344",
    "accounting": "Q4116214",
    "consulting": "Q7020",
    "investment banking": "Q949193",
    "wealth management": "Q2920921",
    "asset management": "Q2920921",
    # Retail
    "retail": "Q194353",
    "e-commerce": "Q484847",
    "ecommerce": "Q484847",
    "online retail": "Q484847",
    "wholesale": "Q1059072",
    "consumer goods": "Q1049",
    "fashion": "Q11460",
    "apparel": "Q11460",
    "clothing": "Q11460",
    "grocery": "Q174782",
    "supermarket": "Q180846",
    # Manufacturing
    "manufacturing": "Q8148",
    "production": "Q8148",
    "industrial": "Q235925",
    "automotive": "Q1420",
    "aerospace": "Q936",
    "electronics": "Q11650",
    "machinery": "Q11019",
    "chemical": "Q11351",
    "plastics": "Q11474",
    "metals": "Q11426",
    "textiles": "Q28823",
    # Food and hospitality
    "restaurant": "Q11862829",
    "food service": "Q11862829",
    "food": "Q2095",
    "beverage": "Q40050",
    "hospitality": "Q2352616",
    "hotel": "Q27686",
    "catering": "Q1838845",
    "bar": "Q187456",
    "cafe": "Q30022",
    "coffee": "Q8486",
    # Professional services
    "professional services": "Q17489659",
    "legal": "Q185351",
    "legal services": "Q185351",
    "law": "Q7748",
    "architecture": "Q12271",
    "engineering": "Q11023",
    "design": "Q82604",
    "marketing": "Q39809",
    "advertising": "Q39908",
    "public relations": "Q15708816",
    "human resources": "Q186909",
    # Education
    "education": "Q8434",
    "training": "Q203872",
    "school": "Q3914",
    "university": "Q3918",
    "college": "Q189004",
    "online education": "Q183270",
    # Media
    "media": "Q11033",
    "entertainment": "Q173799",
    "publishing": "Q3065393",
    "broadcasting": "Q15026",
    "film": "Q590870",
    "music": "Q638",
    "gaming": "Q7889",
    "video games": "Q7889",
    # Construction
    "construction": "Q385378",
    "building": "Q385378",
    "property management": "Q2500254",
    "development": "Q753445",
    # Transportation
    "transportation": "Q334602",
    "logistics": "Q162627",
    "shipping": "Q187939",
    "freight": "Q187939",
    "trucking": "Q178193",
    "airline": "Q46970",
    "aviation": "Q936",
    # Energy
    "energy": "Q11388",
    "power": "Q11376",
    "oil": "Q42962",
    "gas": "Q35581",
    "renewable energy": "Q12705",
    "solar": "Q14542",
    "wind": "Q8068",
    # Agriculture
    "agriculture": "Q11451",
    "farming": "Q11451",
    "food production": "Q2095",
}

LEGAL_FORM_QIDS: Dict[str, str] = {
    "llc": "Q1269299",
    "limited liability company": "Q1269299",
    "corporation": "Q167037",
    "corp": "Q167037",
    "incorporated": "Q167037",
    "inc": "Q167037",
    "c corporation": "Q167037",
    "c corp": "Q167037",
    "s corporation": "Q7387004",
    "s corp": "Q7387004",
    "public company": "Q891723",
    "publicly traded": "Q891723",
    "publicly traded company": "Q891723",
    "public corporation": "Q891723",
    "private company": "Q380085",
    "privately held": "Q380085",
    "private corporation": "Q380085",
    "partnership": "Q167395",
    "general partnership": "Q167395",
    "limited partnership": "Q1463121",
    "lp": "Q1463121",
    "limited liability partnership": "Q1781882",
    "llp": "Q1781882",
    "sole proprietorship": "Q849495",
    "sole proprietor": "Q849495",
    "dba": "Q849495",
    "non-profit": "Q163740",
    "nonprofit": "Q163740",
    "not-for-profit": "Q163740",
    "not for profit": "Q163740",
    "non-profit organization": "Q163740",
    "nonprofit organization": "Q163740",
    "not-for-profit corporation": "Q163740",
    "501c3": "Q163740",
    "charitable organization": "Q163740",
    "charity": "Q163740",
    "cooperative": "Q4539",
    "co-op": "Q4539",
    "co op": "Q4539",
    "joint venture": "Q489209",
    "franchise": "Q219577",
    "trust": "Q1361864",
    "professional corporation": "Q380085",
    "pc": "Q380085",
    "benefit corporation": "Q4884920",
    "b corp": "Q4884920",
    "b corporation": "Q4884920",
}

_STATES = [
    ("alabama", "al", "Q173"),
    ("alaska", "ak", "Q797"),
    ("arizona", "az", "Q816"),
    ("arkansas", "ar", "Q1612"),
    ("california", "ca", "Q99"),
    ("colorado", "co", "Q1261"),
    ("connecticut", "ct", "Q779"),
    ("delaware", "de", "Q1393"),
    ("florida", "fl", "Q812"),
    ("georgia", "ga", "Q1428"),
    ("hawaii", "hi", "Q782"),
    ("idaho", "id", "Q1221"),
    ("illinois", "il", "Q1204"),
    ("indiana", "in", "Q1415"),
    ("iowa", "ia", "Q1546"),
    ("kansas", "ks", "Q1558"),
    ("kentucky", "ky", "Q1603"),
    ("louisiana", "la", "Q1588"),
    ("maine", "me", "Q724"),
    ("maryland", "md", "Q1391"),
    ("massachusetts", "ma", "Q771"),
    ("michigan", "mi", "Q1166"),
    ("minnesota", "mn", "Q1527"),
    ("mississippi", "ms", "Q1494"),
    ("missouri", "mo", "Q1581"),
    ("montana", "mt", "Q1212"),
    ("nebraska", "ne", "Q1553"),
    ("nevada", "nv", "Q1227"),
    ("new hampshire", "nh", "Q759"),
    ("new jersey", "nj", "Q1408"),
    ("new mexico", "nm", "Q1522"),
    ("new york", "ny", "Q1384"),
    ("north carolina", "nc", "Q1454"),
    ("north dakota", "nd", "Q1207"),
    ("ohio", "oh", "Q1397"),
    ("oklahoma", "ok", "Q1649"),
    ("oregon", "or", "Q824"),
    ("pennsylvania", "pa", "Q1400"),
    ("rhode island", "ri", "Q1387"),
    ("south carolina", "sc", "Q1456"),
    ("south dakota", "sd", "Q1211"),
    ("tennessee", "tn", "Q1509"),
    ("texas", "tx", "Q1439"),
    ("utah", "ut", "Q829"),
    ("vermont", "vt", "Q16551"),
    ("virginia", "va", "Q1370"),
    ("washington", "wa", "Q1223"),
    ("west virginia", "wv", "Q1371"),
    ("wisconsin", "wi", "Q1537"),
    ("wyoming", "wy", "Q1214"),
    ("district of columbia", "dc", "Q61"),
]

REGION_QIDS: Dict[str, str] = {}
for _name, _abbr, _qid in _STATES:
    REGION_QIDS[_name] = _qid
    REGION_QIDS[_abbr] = _qid
REGION_QIDS["washington dc"] = "Q61"

COUNTRY_QIDS: Dict[str, str] = {
    "united states": "Q30",
    "us": "Q30",
    "usa": "Q30",
    "united states of america": "Q30",
    "canada": "Q16",
    "mexico": "Q96",
    "united kingdom": "Q145",
    "uk": "Q145",
    "gb": "Q145",
    "great britain": "Q145",
    "britain": "Q145",
    "england": "Q21",
    "scotland": "Q22",
    "wales": "Q25",
    "northern ireland": "Q26",
    "ireland": "Q27",
    "france": "Q142",
    "germany": "Q183",
    "italy": "Q38",
    "spain": "Q29",
    "portugal": "Q45",
    "netherlands": "Q55",
    "belgium": "Q31",
    "switzerland": "Q39",
    "austria": "Q40",
    "sweden": "Q34",
    "norway": "Q20",
    "denmark": "Q35",
    "finland": "Q33",
    "poland": "Q36",
    "czech republic": "Q213",
    "greece": "Q41",
    "russia": "Q159",
    "china": "Q148",
    "japan": "Q17",
    "india": "Q668",
    "south korea": "Q884",
    "korea": "Q884",
    "singapore": "Q334",
    "hong kong": "Q8646",
    "taiwan": "Q865",
    "thailand": "Q869",
    "vietnam": "Q881",
    "indonesia": "Q252",
    "philippines": "Q928",
    "malaysia": "Q833",
    "israel": "Q801",
    "united arab emirates": "Q878",
    "uae": "Q878",
    "saudi arabia": "Q851",
    "turkey": "Q43",
    "australia": "Q408",
    "new zealand": "Q664",
    "brazil": "Q155",
    "argentina": "Q414",
    "chile": "Q298",
    "colombia": "Q739",
    "peru": "Q419",
    "south africa": "Q258",
    "egypt": "Q79",
    "nigeria": "Q1033",
    "kenya": "Q114",
}

STATIC_TABLES: Dict[QidAttributeType, Dict[str, str]] = {
    QidAttributeType.CITY: CITY_QIDS,
    QidAttributeType.INDUSTRY: INDUSTRY_QIDS,
    QidAttributeType.LEGAL_FORM: LEGAL_FORM_QIDS,
    QidAttributeType.REGION: REGION_QIDS,
    QidAttributeType.COUNTRY: COUNTRY_QIDS,
}

STATE_ABBREVIATIONS: Dict[str, str] = {name: abbr for name, abbr, _ in _STATES}
